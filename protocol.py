"""High-level orchestration: run every triple generator variant end to end."""

from __future__ import annotations

import logging
import time
from typing import Dict, List, Tuple

from beaver_triples import (
    BeaverTripleGenerator,
    GeneratorConfig,
    GeneratorVariant,
    TrustedDealer,
    create_generator,
    verify_triple_rows,
)
from constants import DEFAULT_ROUND_TIMEOUT, FIELD_PRIME, SCHEME_ADDITIVE, SCHEME_SHAMIR
from data_models import PerformanceStats, Share
from errors import MPCError
from he_generator import setup_threshold_keys
from network_simulator import NetworkSimulator
from ole import OLEService
from participant import DistributedParticipant
from secure_rng import SecureRandom
from shares import scheme_for

logger = logging.getLogger(__name__)


def print_performance_report(performance_stats: List[PerformanceStats]) -> None:
    """打印优雅的性能报告 / Pretty-print collected performance statistics."""
    print("\n" + "=" * 80)
    print("***  PROTOCOL PERFORMANCE ANALYSIS REPORT  ***".center(80))
    print("=" * 80 + "\n")

    total_time = sum(stat.duration for stat in performance_stats)

    for idx, stat in enumerate(performance_stats, 1):
        percentage = (stat.duration / total_time * 100) if total_time > 0 else 0

        print(f"┌─ Phase {idx}: {stat.phase_name}")
        print(f"│  ⏱  Duration:    {stat.duration*1000:.4f} ms  ({percentage:.1f}% of total)")

        if stat.operations:
            print("│  📊 操作次数:")
            for op_name, count in stat.operations.items():
                print(f"│     • {op_name}: {count:,}")
        print(f"└{'─'*78}\n")

    print("=" * 80)
    print(f"🕐 TOTAL EXECUTION TIME: {total_time*1000:.4f} ms ({total_time:.6f} seconds)")
    print("=" * 80 + "\n")


def _aggregate_performance(participants: List[DistributedParticipant]) -> List[PerformanceStats]:
    """汇总所有参与者的轮次统计 / Per round: slowest party's duration, summed operation counts."""
    by_round: Dict[str, PerformanceStats] = {}
    for participant in participants:
        for stat in participant.generator.performance_stats:
            merged = by_round.setdefault(stat.phase_name, PerformanceStats(stat.phase_name, 0.0))
            merged.duration = max(merged.duration, stat.duration)
            for op_name, count in stat.operations.items():
                merged.operations[op_name] = merged.operations.get(op_name, 0) + count

    generation = max((p.generation_time for p in participants), default=0.0)
    multiplication = max((p.multiplication_time for p in participants), default=0.0)
    return list(by_round.values()) + [
        PerformanceStats("三元组生成 (total)", generation, {"triples": sum(len(p.triples) for p in participants)}),
        PerformanceStats("Beaver乘法", multiplication, {"products": sum(len(p.products) for p in participants)}),
    ]


def build_generators(
    variant: GeneratorVariant,
    network: NetworkSimulator,
    party_count: int,
    threshold: int,
    scheme: str,
    session_id: str,
    round_timeout: float = DEFAULT_ROUND_TIMEOUT,
) -> Tuple[List[BeaverTripleGenerator], TrustedDealer | None]:
    """One generator per party, wired to the session's shared collaborators."""
    configs = [
        GeneratorConfig(party_count, threshold, pid, round_timeout, scheme, session_id)
        for pid in range(1, party_count + 1)
    ]
    session_rng = SecureRandom(session_id)
    rngs = {config.party_id: session_rng.derive_child(f"party-{config.party_id}") for config in configs}
    dealer = None
    if variant is GeneratorVariant.TRUSTED_PARTY:
        dealer = TrustedDealer(party_count, threshold, scheme, rng=session_rng.derive_child("dealer"))
        dealer.register(network)
        generators = [
            create_generator(variant, config, network=network, rng=rngs[config.party_id]) for config in configs
        ]
    elif variant is GeneratorVariant.OLE:
        service = OLEService()
        generators = [
            create_generator(variant, config, network=network, ole_service=service, rng=rngs[config.party_id])
            for config in configs
        ]
    else:
        he_scheme, public_key, key_shares = setup_threshold_keys(party_count, threshold)
        generators = [
            create_generator(
                variant, config, network=network, scheme=he_scheme,
                public_key=public_key, key_share=key_shares[config.party_id], rng=rngs[config.party_id],
            )
            for config in configs
        ]
    return generators, dealer


def run_beaver_session(
    variant: GeneratorVariant,
    party_count: int = 3,
    threshold: int = 2,
    scheme: str = SCHEME_SHAMIR,
    pairs: List[Tuple[int, int]] | None = None,
) -> Dict[str, object]:
    """Generate one triple per input pair, multiply every pair, reconstruct and verify."""
    pairs = pairs or [(6, 7)]
    network = NetworkSimulator()
    session_id = f"{variant.value}-{scheme}"
    generators, dealer = build_generators(variant, network, party_count, threshold, scheme, session_id)

    algebra = scheme_for(scheme)
    shared_inputs: Dict[int, List[Tuple[Share, Share]]] = {pid: [] for pid in range(1, party_count + 1)}
    for x, y in pairs:
        if scheme == SCHEME_ADDITIVE:
            x_shares, y_shares = algebra.share(x, party_count), algebra.share(y, party_count)
        else:
            x_shares, y_shares = algebra.share(x, threshold, party_count), algebra.share(y, threshold, party_count)
        for x_share, y_share in zip(x_shares, y_shares):
            shared_inputs[x_share.index].append((x_share, y_share))

    participants = [
        DistributedParticipant(generator, network, shared_inputs[generator.party_id]) for generator in generators
    ]

    start_time = time.time()
    for participant in participants:
        participant.start()
    if dealer is not None:
        dealer.distribute(network, range(len(pairs)), session_id)
    for participant in participants:
        participant.join()
    total_time = time.time() - start_time

    for participant in participants:
        if participant.error is not None:
            raise participant.error
    logger.info("Session %s finished in %.2f ms", session_id, total_time * 1000)

    triples_ok = all(
        verify_triple_rows({p.participant_id: p.triples[position] for p in participants})
        for position in range(len(pairs))
    )
    products = [
        algebra.reconstruct([p.products[position] for p in participants]) for position in range(len(pairs))
    ]
    expected = [x * y % FIELD_PRIME for x, y in pairs]
    return {
        'variant': variant.value,
        'scheme': scheme,
        'products': products,
        'expected': expected,
        'triples_ok': triples_ok,
        'total_time': total_time,
        'messages': dict(network.message_counts),
        'performance': _aggregate_performance(participants),
    }


def test_beaver_variants() -> None:
    """运行三种三元组生成方式的演示 / Run every generator variant once per sharing scheme."""
    print("\n" + "=" * 80)
    print("***  BEAVER TRIPLE GENERATION AND MULTIPLICATION  ***".center(80))
    print("=" * 80 + "\n")

    num_participants, threshold = 3, 2
    pairs = [(6, 7), (123456789, 987654321)]

    print("*** Protocol Parameters ***")
    print(f"  • Number of participants (N): {num_participants}")
    print(f"  • Threshold (T):              {threshold}")
    print(f"  • Prime field size:           2^61 - 1")
    print(f"  • Prime bit length:           {FIELD_PRIME.bit_length()} bits")
    print(f"  • Dealer rows:                X25519 + AES-256-GCM, Ed25519 signatures")
    print("-" * 80 + "\n")

    for variant in GeneratorVariant:
        for scheme in (SCHEME_SHAMIR, SCHEME_ADDITIVE):
            try:
                result = run_beaver_session(variant, num_participants, threshold, scheme, pairs)
            except MPCError as exc:
                print(f"  {variant.value:<14} {scheme:<9} ✗ FAILED: {exc}")
                continue
            status = "✓ SUCCESS" if result['products'] == result['expected'] and result['triples_ok'] else "✗ MISMATCH"
            print(
                f"  {variant.value:<14} {scheme:<9} {status} - products {result['products']} | "
                f"messages {sum(result['messages'].values())} | {result['total_time']*1000:.2f} ms"
            )
            if variant is GeneratorVariant.HOMOMORPHIC and scheme == SCHEME_SHAMIR:
                print_performance_report(result['performance'])


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    test_beaver_variants()
