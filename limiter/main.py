"""Traffic simulator — drives the rate limiter with normal and abusive callers.

Simulates the vesting tracker's outbound traffic against the Bitcoin data
providers and pushes every check through a RateLimiter.  Denials are
published to Kafka as rate_limit_event records (the same event type the
detection pipeline consumes) and decision metrics are served to
Prometheus.

Time is simulated: each event advances a manual clock by 1/eps seconds, so
an hour of traffic replays in seconds unless --realtime is given.

Usage:
    python -m limiter.main --dry-run --events 5000
    python -m limiter.main --normal 20 --rapid-fire 2 --address-scanners 1 --endpoint-scanners 1
    python -m limiter.main --bootstrap-servers kafka-1:29092 --topic rate-limit-events --metrics-port 9091
"""

import argparse
import json
import logging
import random
import signal
import time
import uuid
from dataclasses import dataclass

from confluent_kafka import KafkaError, KafkaException, Producer
from confluent_kafka.admin import AdminClient, NewTopic
from prometheus_client import start_http_server

from limiter.clock import ManualClock
from limiter.config import DEFAULT_LIMITS, resolve
from limiter.loader import load_limits
from limiter.service import Decision, RateLimiter

CATEGORIES = list(DEFAULT_LIMITS)

# Denials are only interesting while someone is investigating them.
DENIAL_RETENTION_MS = 24 * 3_600_000

# Casual users mostly check fees and network status, occasionally a tx.
_NORMAL_MIX = {
    "fee-calculator": 0.35,
    "network-status": 0.30,
    "transaction-lookup": 0.25,
    "address-explorer": 0.08,
    "document-timestamp": 0.02,
}

running = True


def _shutdown(sig, frame):
    global running
    print("\nShutting down simulator...")
    running = False


# ---------------------------------------------------------------------------
# Caller profiles
# ---------------------------------------------------------------------------

@dataclass
class Caller:
    caller_id: str
    role: str  # normal | rapid_fire | address_scanner | endpoint_scanner
    events_per_min: float
    categories: dict[str, float]


def _create_callers(n_normal, n_rapid, n_address, n_scanners):
    """Build the caller pool."""
    callers = []
    cid = 0

    for _ in range(n_normal):
        cid += 1
        callers.append(Caller(
            caller_id=f"session_{cid:04d}", role="normal",
            events_per_min=random.uniform(2, 12), categories=_NORMAL_MIX,
        ))

    # --- Rapid fire: one category, far too fast ---
    for _ in range(n_rapid):
        cid += 1
        callers.append(Caller(
            caller_id=f"session_{cid:04d}", role="rapid_fire",
            events_per_min=random.uniform(120, 240),
            categories={random.choice(CATEGORIES): 1.0},
        ))

    # --- Address scanners: walking the explorer ---
    for _ in range(n_address):
        cid += 1
        callers.append(Caller(
            caller_id=f"session_{cid:04d}", role="address_scanner",
            events_per_min=random.uniform(8, 20),
            categories={"address-explorer": 1.0},
        ))

    # --- Endpoint scanners: every category, steady volume ---
    for _ in range(n_scanners):
        cid += 1
        callers.append(Caller(
            caller_id=f"session_{cid:04d}", role="endpoint_scanner",
            events_per_min=random.uniform(10, 30),
            categories={c: 1.0 for c in CATEGORIES},
        ))

    return callers


def _payload(caller: Caller, category: str) -> dict:
    if category != "address-explorer":
        return {}
    if caller.role == "address_scanner" and random.random() < 0.2:
        return {"address": "1" * random.randint(10, 34)}
    return {"address": "bc1q" + uuid.uuid4().hex[:38]}


# ---------------------------------------------------------------------------
# Simulation
# ---------------------------------------------------------------------------

def simulate_step(limiter: RateLimiter, caller: Caller) -> tuple[str, Decision]:
    """One outbound call attempt: check, and record if the call goes ahead."""
    categories = list(caller.categories)
    weights = list(caller.categories.values())
    category = random.choices(categories, weights=weights, k=1)[0]
    decision = limiter.check(category, caller.caller_id, _payload(caller, category))
    if decision.allowed:
        limiter.record(category, caller.caller_id)
    return category, decision


def to_event(caller: Caller, category: str, decision: Decision,
             limiter: RateLimiter, now_ms: int) -> dict:
    """Shape a denial as a rate_limit_event."""
    config = resolve(limiter.limits, category)
    return {
        "event_type": "rate_limit_event",
        "timestamp": now_ms / 1000,
        "request_id": f"req_{uuid.uuid4().hex[:12]}",
        "user_id": caller.caller_id,
        "limit_type": category,
        "strategy": config.strategy,
        "reason": decision.reason,
        "retry_after_ms": decision.retry_after_ms,
        "limit_value": config.max_requests,
        "warning_message": decision.warning_message,
    }


def _ensure_topic(admin, topic, partitions=1, replication_factor=1,
                  retention_ms=DENIAL_RETENTION_MS):
    """Create the denial topic if missing.  Returns True if it was created."""
    spec = NewTopic(
        topic,
        num_partitions=partitions,
        replication_factor=replication_factor,
        config={"retention.ms": str(retention_ms), "cleanup.policy": "delete"},
    )
    future = admin.create_topics([spec])[topic]
    try:
        future.result()
    except KafkaException as e:
        if e.args[0].code() != KafkaError.TOPIC_ALREADY_EXISTS:
            raise
        print(f"Topic '{topic}' already exists")
        return False
    print(f"Created topic '{topic}' ({partitions} partitions, rf={replication_factor})")
    return True


def _print_stats(limiter: RateLimiter):
    stats = limiter.stats()
    top = ", ".join(f"{e.category}={e.count}" for e in stats.top_endpoints)
    print(f"  ... checks={stats.total_requests} blocked={stats.blocked_requests} "
          f"blocked_sessions={stats.blocked_session_count}  top: {top}")


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

def main():
    parser = argparse.ArgumentParser(description="Rate limiter traffic simulator")
    parser.add_argument("--bootstrap-servers", default="localhost:9092")
    parser.add_argument("--topic", default="rate-limit-events")
    parser.add_argument("--partitions", type=int, default=1)
    parser.add_argument("--replication-factor", type=int, default=1)
    parser.add_argument("--dry-run", action="store_true", help="Don't publish to Kafka")
    parser.add_argument("--limits", help="YAML limits file (default: compiled-in table)")
    parser.add_argument("--normal", type=int, default=8)
    parser.add_argument("--rapid-fire", type=int, default=1)
    parser.add_argument("--address-scanners", type=int, default=1)
    parser.add_argument("--endpoint-scanners", type=int, default=1)
    parser.add_argument("--eps", type=float, default=20, help="Simulated events/sec")
    parser.add_argument("--events", type=int, default=0, help="Stop after N events (0 = run forever)")
    parser.add_argument("--realtime", action="store_true", help="Sleep between events")
    parser.add_argument("--metrics-port", type=int, default=0, help="Serve Prometheus metrics on this port")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    limits = load_limits(args.limits) if args.limits else None
    clock = ManualClock(start_ms=int(time.time() * 1000))
    callers = _create_callers(
        args.normal, args.rapid_fire, args.address_scanners, args.endpoint_scanners,
    )
    weights = [c.events_per_min for c in callers]

    print(f"Simulating {len(callers)} callers at ~{args.eps} events/sec")
    for c in callers:
        print(f"  {c.caller_id}  {c.role:<17s} ~{c.events_per_min:>6.0f} epm")

    if args.metrics_port:
        start_http_server(args.metrics_port)
        print(f"Prometheus metrics server started on :{args.metrics_port}")

    producer = None
    if not args.dry_run:
        admin = AdminClient({"bootstrap.servers": args.bootstrap_servers})
        _ensure_topic(admin, args.topic, args.partitions, args.replication_factor)
        producer = Producer({
            "bootstrap.servers": args.bootstrap_servers,
            "acks": "all",
            "client.id": "rate-limit-simulator",
        })

    step_ms = int(1000 / args.eps)
    count = 0
    denied = 0

    # The scheduler thread runs on wall time; the simulation sweeps on its own clock.
    with RateLimiter(limits=limits, clock=clock, start_cleanup=False) as limiter:
        last_sweep = clock.now()
        try:
            while running and (not args.events or count < args.events):
                caller = random.choices(callers, weights=weights, k=1)[0]
                category, decision = simulate_step(limiter, caller)
                count += 1

                if not decision.allowed:
                    denied += 1
                    print(f"DENY  {caller.caller_id}  {caller.role:<17s} "
                          f"{category:<19s} reason={decision.reason:<18s} "
                          f"retry={decision.retry_after_ms}ms")
                    if producer is not None:
                        event = to_event(caller, category, decision, limiter, clock.now())
                        producer.produce(
                            topic=args.topic,
                            key=caller.caller_id.encode(),
                            value=json.dumps(event),
                        )
                        producer.poll(0)

                clock.advance(step_ms)
                if clock.now() - last_sweep >= 60_000:
                    limiter.cleanup()
                    last_sweep = clock.now()

                if count % 500 == 0:
                    _print_stats(limiter)

                if args.realtime:
                    time.sleep(step_ms / 1000)
        finally:
            if producer is not None:
                producer.flush()
            print(f"Done. {count} checks simulated, {denied} denied.")


if __name__ == "__main__":
    main()
