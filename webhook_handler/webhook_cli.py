"""Command line entry point for the webhook listener.

Run with: python -m webhook_handler.webhook_cli serve
"""
import argparse
import logging
import os
import sys

import requests

from .config import SECRET_VAR, ConfigError, Settings
from .utils import load_env, setup_logging
from .webhook_receiver import create_app
from .webhook_signer import send_signed

logger = logging.getLogger("webhook.cli")


def serve(args) -> int:
    try:
        settings = Settings.from_env(env_file=args.env_file)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    setup_logging(args.log_level or settings.log_level)
    if not os.path.exists(settings.script_path):
        logger.warning("Deployment script %s does not exist yet", settings.script_path)

    import uvicorn
    host = args.host or settings.host
    port = args.port or settings.port
    logger.info("Listening on %s:%s%s, script %s", host, port, settings.webhook_path, settings.script_path)
    uvicorn.run(create_app(settings), host=host, port=port, log_level=(args.log_level or settings.log_level).lower())
    return 0


def send(args) -> int:
    env = load_env(args.env_file) if args.env_file else {}
    secret = os.getenv(SECRET_VAR) or env.get(SECRET_VAR)
    if not secret:
        print(f"error: {SECRET_VAR} is not set", file=sys.stderr)
        return 2
    if args.file:
        with open(args.file, 'rb') as f:
            body = f.read()
    else:
        body = args.data.encode('utf-8')
    try:
        resp = send_signed(args.url, body, secret.encode('utf-8'), event=args.event)
    except requests.RequestException as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    print('Status:', resp.status_code)
    print('Response:', resp.text)
    return 0 if resp.ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='webhook-handler')
    parser.add_argument("--env-file", default=None, help="optional KEY=VALUE file loaded before the environment")
    sub = parser.add_subparsers(dest='command', required=True)

    p_serve = sub.add_parser('serve', help='run the webhook listener')
    p_serve.add_argument("--host")
    p_serve.add_argument("--port", type=int)
    p_serve.add_argument("--log-level")
    p_serve.set_defaults(func=serve)

    p_send = sub.add_parser('send', help='POST a signed test payload')
    p_send.add_argument("--url", default='http://127.0.0.1:8080/')
    p_send.add_argument("--data", default='{"ref": "refs/heads/main"}')
    p_send.add_argument("--file")
    p_send.add_argument("--event", default='push')
    p_send.set_defaults(func=send)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
