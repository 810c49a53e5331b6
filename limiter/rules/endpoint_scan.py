"""Endpoint scanning — breadth plus volume.

Touching many categories is normal for someone clicking through the tools;
touching more than 3 of them with more than 30 attempts in five minutes is
a crawler walking every provider.
"""

from limiter.rules import Rule


class EndpointScan(Rule):
    id = "endpoint_scan"
    name = "Endpoint Scanning"
    message = "Automated scanning detected. Please use tools responsibly."
    min_categories = 3
    min_attempts = 30

    def trigger(self, attempts, category, now):
        categories = {a.category for a in attempts}
        return len(categories) > self.min_categories and len(attempts) > self.min_attempts

    def evidence(self, attempts, category, now):
        return {
            "categories": sorted({a.category for a in attempts}),
            "total_attempts": len(attempts),
        }
