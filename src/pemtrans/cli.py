from __future__ import annotations

import argparse
import sys

from .convert import convert
from .errors import PemtransError, UsageError
from .report import EXIT_OK, report_error

SYNTAX = "Syntax: pemtrans <key> <cert> <out> <label> <secret>"
FIELDS = ("key", "cert", "out", "label", "secret")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        "pemtrans",
        description="Store a PEM RSA private key and its certificate in a keyset file",
    )
    p.add_argument("key", help="PEM private key file")
    p.add_argument("cert", help="certificate file (PEM or DER)")
    p.add_argument("out", help="keyset file; created if missing, appended to otherwise")
    p.add_argument("label", help="label of the private key entry")
    p.add_argument("secret", help="secret protecting the private key in the keyset")
    return p


def parse_arguments(argv: list[str]) -> argparse.Namespace:
    # values are taken verbatim, so a label or secret may start with '-'
    if argv in (["-h"], ["--help"]):
        build_parser().parse_args(argv)
    if len(argv) != len(FIELDS):
        raise UsageError(SYNTAX)
    return argparse.Namespace(**dict(zip(FIELDS, argv)))


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else list(argv)
    try:
        args = parse_arguments(argv)
        convert(args.key, args.cert, args.out, args.label, args.secret)
    except PemtransError as e:
        report_error(e)
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
