"""
CLI entry point for the Sidecar agent server.

Run:  sidecar [--port 3001] [--target-port 3000] [--dir /path/to/project]
"""

import argparse
import logging
import os

import web.state as _state
from config import app_config
from project import read_project_config, write_project_config
from verbose import set_verbose


def main():
    import uvicorn

    parser = argparse.ArgumentParser(description="Sidecar — agent server for a local web project")
    parser.add_argument("--port", type=int, default=app_config.control_port,
                        help=f"Server port (default: {app_config.control_port})")
    parser.add_argument("--host", default="127.0.0.1", help="Server host (default: 127.0.0.1)")
    parser.add_argument("--target-port", type=int, default=app_config.target_port,
                        help=f"Port the project's dev server listens on (default: {app_config.target_port})")
    parser.add_argument("--dir", default=".", help="Project directory")
    parser.add_argument("--dev-command", default=app_config.dev_command,
                        help=f"Command that starts the dev server (default: {app_config.dev_command!r})")
    parser.add_argument("--no-dev-server", action="store_true",
                        help="Do not start or supervise the dev server")
    parser.add_argument("--create", action="store_true",
                        help="Mark the project as fresh so the agent runs in creation mode")
    parser.add_argument("-v", "--verbose", action="store_true", help="Trace every agent event")
    args = parser.parse_args()

    project_cwd = os.path.abspath(os.path.expanduser(args.dir))
    if not os.path.isdir(project_cwd):
        print(f"\n  Error: directory not found: {project_cwd}")
        print(f"  Hint: use the full path, e.g. --dir ~/Desktop/my-project\n")
        raise SystemExit(1)

    if args.create:
        config = read_project_config(project_cwd)
        config["fresh"] = True
        write_project_config(project_cwd, config)

    # uvicorn's log_level only affects its own loggers
    root_log = logging.getLogger()
    root_log.setLevel(getattr(logging, app_config.log_level.upper(), logging.INFO))
    if not root_log.handlers:
        h = logging.StreamHandler()
        h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [sidecar] %(message)s"))
        root_log.addHandler(h)
    set_verbose(args.verbose or app_config.verbose)

    _state.init_services(
        project_cwd,
        args.target_port,
        dev_command=args.dev_command,
        dev_server=not args.no_dev_server,
    )

    print(f"\n  Sidecar")
    print(f"  http://{args.host}:{args.port}")
    print(f"  Project: {project_cwd}")
    if not args.no_dev_server:
        print(f"  Dev server: {args.dev_command} (port {args.target_port})")
    print()

    from web import app
    uvicorn.run(app, host=args.host, port=args.port, log_level="warning")


if __name__ == "__main__":
    main()
