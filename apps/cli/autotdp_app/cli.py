"""CLI entrypoints for the AutoTDP governor, diagnostics, telemetry and curve tools."""

from __future__ import annotations

import argparse
import json
import time
from dataclasses import asdict
from pathlib import Path

from autotdp_control import CurveLibrary
from autotdp_core import (
    DiagnosticsExporter,
    DryRunProcessor,
    Governor,
    ProcessorVendor,
    build_doctor_payload,
    load_config,
)
from autotdp_core.config import curves_path
from autotdp_core.logging_setup import configure_logging, install_crash_hooks
from autotdp_telemetry import SignalNames, TelemetryChannel, TelemetryError


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


def cmd_run(args: argparse.Namespace) -> int:
    cfg = load_config(Path(args.config) if args.config else None)
    if args.fps is not None:
        cfg.performance.autotdp_fps_target = args.fps
    if args.autotdp:
        cfg.performance.autotdp_enabled = True

    install_crash_hooks()
    processor = DryRunProcessor(vendor=ProcessorVendor(args.vendor))
    governor = Governor(cfg, processor)
    governor.start()
    deadline = time.monotonic() + args.seconds if args.seconds else None
    try:
        while deadline is None or time.monotonic() < deadline:
            time.sleep(0.5)
    except KeyboardInterrupt:
        pass
    finally:
        governor.stop()

    _print_json(governor.status())
    return 0


def cmd_doctor(args: argparse.Namespace) -> int:
    cfg = load_config()
    payload = build_doctor_payload(cfg)

    if args.export:
        exporter = DiagnosticsExporter()
        out_dir = Path(args.out_dir).expanduser().resolve() if args.out_dir else None
        bundle = exporter.bundle(cfg=cfg, doctor_payload=payload, recent_events=[], output_dir=out_dir)
        payload["diagnostics_bundle"] = str(bundle)

    _print_json(payload)
    return 0


def cmd_telemetry(args: argparse.Namespace) -> int:
    cfg = load_config()
    t = cfg.telemetry
    dump = args.dump or t.shared_memory_path
    channel = TelemetryChannel(name=t.shared_memory_name, path=Path(dump) if dump else None)
    try:
        channel.connect()
        channel.poll_readings()
    except TelemetryError as exc:
        _print_json({"success": False, "error": str(exc)})
        return 2

    names = SignalNames(
        fps_group=t.fps_group,
        framerate_label=t.framerate_label,
        frame_time_label=t.frame_time_label,
        cpu_group=t.cpu_group,
        package_power_label=t.package_power_label,
    )
    payload = {
        "success": True,
        "header": asdict(channel.header) if channel.header else None,
        "signals": asdict(channel.signals(names)),
        "groups": [
            {
                "name": group.name_original,
                "name_user": group.name_user,
                "readings": [
                    {"label": r.label_original, "unit": r.unit, "kind": r.reading_kind.name, "value": r.value}
                    for r in group.readings
                ],
            }
            for group in channel.groups
        ],
    }
    channel.close()
    _print_json(payload)
    return 0


def cmd_curve(args: argparse.Namespace) -> int:
    cfg = load_config()
    c = cfg.controller
    library = CurveLibrary(min_tdp=c.min_tdp, max_tdp=c.max_tdp, damping=c.rescale_damping)
    if args.file:
        try:
            curve = library.load_file(Path(args.file))
        except (OSError, ValueError) as exc:
            _print_json({"success": False, "error": str(exc)})
            return 2
    else:
        library.load_dir(curves_path(cfg))
        curve = library.curve_for(args.application)

    payload: dict[str, object] = {
        "application": curve.application,
        "fps": args.fps,
        "required_tdp": curve.required_tdp(args.fps),
        "nodes": curve.to_dict()["nodes"],
    }
    if args.tdp is not None:
        payload["tdp"] = args.tdp
        payload["expected_fps"] = curve.expected_fps(args.tdp)
    _print_json(payload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="autotdp", description="Frame-rate targeting TDP governor and tools")
    sub = parser.add_subparsers(dest="command", required=True)

    run_cmd = sub.add_parser("run", help="Run the governor headless against a dry-run hardware sink")
    run_cmd.add_argument("--seconds", type=float, default=0, help="Stop after this many seconds (0 runs until Ctrl-C)")
    run_cmd.add_argument("--fps", type=float, default=None, help="AutoTDP frame-rate target")
    run_cmd.add_argument("--autotdp", action="store_true", help="Start AutoTDP immediately")
    run_cmd.add_argument("--vendor", choices=[v.value for v in ProcessorVendor], default=ProcessorVendor.AMD.value)
    run_cmd.add_argument("--config", default=None, help="Optional config file path")
    run_cmd.set_defaults(func=cmd_run)

    doctor_cmd = sub.add_parser("doctor", help="Print diagnostics about telemetry, curves and platform")
    doctor_cmd.add_argument("--export", action="store_true", help="Export offline diagnostics bundle")
    doctor_cmd.add_argument("--out-dir", default=None, help="Optional output directory for diagnostics bundle")
    doctor_cmd.set_defaults(func=cmd_doctor)

    telemetry_cmd = sub.add_parser("telemetry", help="Print sensor groups from shared memory")
    telemetry_cmd.add_argument("--dump", default=None, help="Read a captured region dump instead of live memory")
    telemetry_cmd.set_defaults(func=cmd_telemetry)

    curve_cmd = sub.add_parser("curve", help="Look up the TDP a curve expects for a frame rate")
    curve_cmd.add_argument("--fps", type=float, required=True)
    curve_cmd.add_argument("--tdp", type=float, default=None, help="Also print expected FPS at this TDP")
    curve_cmd.add_argument("--file", default=None, help="Curve JSON document")
    curve_cmd.add_argument("--application", default=None, help="Curve library entry (defaults to the built-in curve)")
    curve_cmd.set_defaults(func=cmd_curve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    cfg = load_config(Path(args.config) if getattr(args, "config", None) else None)
    configure_logging(keep_files=cfg.diagnostics.keep_log_files, console=False)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
