# run.py
# Entry point. Config and wiring only — no logic lives here.
#
#   flow-seal flows/<target_flow>.json        run a plan and seal the packet
#   flow-seal --verify runs/<id>/deliverable  re-verify a sealed packet

import sys

from flow_seal import display
from flow_seal.browser import playwright_provider
from flow_seal.config import Settings
from flow_seal.engine import EXIT_REJECTED, CaptureEngine
from flow_seal.errors import PolicyViolation, SchemaError
from flow_seal.policy import load_plan
from flow_seal.sealing import verify_packet

EXIT_VERIFY_FAILED = 4
EXIT_USAGE = 64

USAGE = "USAGE: flow-seal flows/<target_flow>.json | flow-seal --verify <deliverable_dir>"


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv

    if len(args) == 2 and args[0] == "--verify":
        report = verify_packet(args[1])
        display.verification_report(args[1], report)
        return 0 if report.ok else EXIT_VERIFY_FAILED

    if len(args) != 1 or args[0].startswith("-"):
        print(USAGE, file=sys.stderr)
        return EXIT_USAGE

    try:
        plan = load_plan(args[0])
    except (SchemaError, PolicyViolation) as exc:
        display.load_rejected(exc.kind, str(exc))
        return EXIT_REJECTED
    display.mode_gate_pass(plan.capture_mode, len(plan.steps))

    engine = CaptureEngine(plan, Settings.from_env(), playwright_provider)
    result = engine.run()
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
