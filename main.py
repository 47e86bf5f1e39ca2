#!/usr/bin/env python3
"""
Scatterview - Main Entry Point

Loads the variables of one scatterplot and writes it as a standalone HTML page.

Usage:
    python main.py --collection districts --x all_ses --y all_avg --z sz
    python main.py --collection schools --region 01 --x frl_pct --y all_avg
    python main.py ... --selected 0100005 0100006 --out plot.html --verbose

The endpoint comes from --endpoint, the SCATTERVIEW_ENDPOINT env var, or the
"endpoint" key in config.json.
"""

import argparse
import sys
import uuid
from concurrent.futures import CancelledError, TimeoutError
from datetime import datetime

import config
from data_ops.errors import ScatterviewError
from scatterplot import ScatterplotProps, ScatterplotView
from scatterplot.logging import get_current_log_path, log_error, set_session_id, setup_logging


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Render a scatterplot of two or three variables.")
    parser.add_argument("--endpoint", default=None, help="Base URL of the CSV files")
    parser.add_argument("--collection", default=None, help="Collection name (e.g. districts)")
    parser.add_argument("--region", default=None, help="Region, for per-region collections")
    parser.add_argument("--x", dest="x_var", required=True, help="x-axis variable")
    parser.add_argument("--y", dest="y_var", required=True, help="y-axis variable")
    parser.add_argument("--z", dest="z_var", default=None, help="Marker-size variable")
    parser.add_argument("--selected", nargs="*", default=[], help="Ids to mark as selected")
    parser.add_argument("--highlighted", nargs="*", default=[], help="Ids to mark as highlighted")
    parser.add_argument("--out", default=None, help="Output HTML path")
    parser.add_argument("--timeout", type=float, default=120, help="Seconds to wait for data")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    set_session_id(f"{datetime.now():%Y%m%d_%H%M%S}_{uuid.uuid4().hex[:8]}")
    setup_logging(verbose=args.verbose)

    props = ScatterplotProps(
        endpoint=args.endpoint or config.ENDPOINT,
        collection=args.collection,
        region=args.region,
        x_var=args.x_var,
        y_var=args.y_var,
        z_var=args.z_var,
        selected=args.selected,
        highlighted=args.highlighted,
        options={"layout": {"xaxis": {"title": {"text": args.x_var}},
                            "yaxis": {"title": {"text": args.y_var}}}},
    )
    view = ScatterplotView(props)
    try:
        future = view.mount()
        future.result(timeout=args.timeout)
    except (ScatterviewError, CancelledError, TimeoutError) as e:
        log_error("Could not build scatterplot", exc=e, context={"args": vars(args)})
        print(f"Error: {e}", file=sys.stderr)
        log_path = get_current_log_path()
        if log_path is not None:
            print(f"Details in {log_path}", file=sys.stderr)
        return 1
    finally:
        view.close()

    name = "-".join(v for v in (args.collection, args.x_var, args.y_var) if v)
    out = args.out or str(config.get_data_dir() / "figures" / f"{name}.html")
    result = view.renderer.export_html(out)
    if result["status"] != "success":
        print(f"Error: {result['message']}", file=sys.stderr)
        return 1
    print(f"Wrote {len(view.get_data_series('base').data)} points to {result['filepath']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
