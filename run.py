#!/usr/bin/env python3
"""EMSG daemon: federated messaging with DNS routing and key-based identity.

Usage:
    python run.py --domain example.com                  # default port 8765
    python run.py --domain example.com --port 8080 --public-url https://emsg.example.com
    python run.py --env-file .env                       # EMSG_* settings from a file

Then publish the server in DNS:
    _emsg.example.com TXT "https://emsg.example.com"
"""

import argparse
import logging

import uvicorn

from emsgd import __version__
from emsgd.config import DaemonConfig
from emsgd.main import app


def main():
    parser = argparse.ArgumentParser(description="EMSG daemon")
    parser.add_argument("--env-file", default=None, help="KEY=VALUE file with EMSG_* settings")
    parser.add_argument("--domain", default=None, help="Domain this daemon serves (e.g. example.com)")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on")
    parser.add_argument("--host", default=None, help="Interface to bind")
    parser.add_argument("--data-dir", default=None, help="Data directory (default: ./emsg_data)")
    parser.add_argument("--public-url", default=None, help="URL published in the _emsg TXT record")
    parser.add_argument("--local-domain", action="append", default=None,
                        help="Extra domain served locally (repeatable)")
    parser.add_argument("--log-level", default=None, help="debug, info, warning, error")
    args = parser.parse_args()

    config = DaemonConfig.from_env()
    if args.env_file:
        config = DaemonConfig.from_file(args.env_file, base=config)
    for name in ("domain", "port", "host", "data_dir", "public_url", "log_level"):
        value = getattr(args, name)
        if value is not None:
            setattr(config, name, value)
    if args.local_domain:
        config.local_domains = args.local_domain

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    # Attach config to app state so lifespan can read it
    app.state.config = config

    print(f"\n  EMSG daemon v{__version__}")
    print(f"  Domain: {config.domain}")
    print(f"  Port:   {config.port}")
    print(f"  Data:   {config.data_dir}")
    print(f"  URL:    {config.server_url}")
    print()

    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
