"""Address scanning — sustained lookups against the address explorer.

Addresses are the most privacy-sensitive thing the tracker touches, so the
explorer gets a stricter, category-specific rule: more than 20 lookups in
the analyzer window is enumeration, not verification of one's own wallet.
"""

from limiter.rules import Rule

ADDRESS_EXPLORER = "address-explorer"


class AddressScan(Rule):
    id = "address_scan"
    name = "Address Scanning"
    message = "Excessive address lookups detected. This tool is for occasional use."
    threshold = 20

    def trigger(self, attempts, category, now):
        if category != ADDRESS_EXPLORER:
            return False
        lookups = sum(1 for a in attempts if a.category == ADDRESS_EXPLORER)
        return lookups > self.threshold

    def evidence(self, attempts, category, now):
        return {
            "address_lookups": sum(1 for a in attempts if a.category == ADDRESS_EXPLORER),
        }
