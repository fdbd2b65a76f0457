#!/usr/bin/env python3
"""Inspect the Li.Fi bridge route and Jupiter swap quote for an amount, without an execution."""

import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from kanz.config import load_config
from kanz.core.bridge import build_bridge_payload
from kanz.core.errors import KanzError
from kanz.core.models import Execution, ExecutionStatus
from kanz.core.quotes import JupiterClient, LiFiClient
from kanz.core.swap import jupiter_quote_params
from kanz.core.utils import to_smallest_unit, utc_now_iso

load_dotenv()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--amount", default="1")
    parser.add_argument("--evm-address", required=True)
    parser.add_argument("--solana-address", required=True)
    parser.add_argument("--source-chain", default="base")
    args = parser.parse_args()

    config = load_config()
    now = utc_now_iso()
    probe = Execution(
        id="inspect",
        user_id="inspect",
        amount_usdc=args.amount,
        source_chain=args.source_chain,
        evm_address=args.evm_address,
        solana_address=args.solana_address,
        created_at=now,
        updated_at=now,
        status=ExecutionStatus.BRIDGED,
    )

    try:
        bridge = build_bridge_payload(config=config, execution=probe, lifi=LiFiClient(config))
        print("BRIDGE")
        print(f"  from amount: {bridge.from_amount} ({bridge.from_amount / 10**config.defaults.usdc_decimals:.6f} USDC)")
        print(f"  target:      {bridge.to}")
        print(f"  value:       {bridge.value}")
        print(f"  gas limit:   {bridge.gas_limit}")
        print(f"  call data:   {bridge.data[:100]}...")
        if bridge.approval is not None:
            print(f"  approval on: {bridge.approval.to}")
            print(f"  approval:    {bridge.approval.data}")
    except KanzError as exc:
        print(f"Bridge quote failed: {exc}")

    jupiter = JupiterClient(config)
    if not jupiter.is_configured:
        print("\nJUPITER_API_KEY not set, skipping swap quote.")
        return
    try:
        amount = to_smallest_unit(args.amount, config.defaults.usdc_decimals)
        quote = jupiter.quote(jupiter_quote_params(config, amount))
        print("\nSWAP")
        print(f"  in:           {quote.get('inAmount')}")
        print(f"  out:          {quote.get('outAmount')}")
        print(f"  price impact: {quote.get('priceImpactPct')}")
        print(f"  hops:         {len(quote.get('routePlan') or [])}")
    except KanzError as exc:
        print(f"Swap quote failed: {exc}")


if __name__ == "__main__":
    main()
