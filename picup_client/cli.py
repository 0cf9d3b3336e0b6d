from __future__ import annotations

import argparse
import asyncio
import os
import sys
from typing import List

import httpx

from .client import DEFAULT_API_URL, PicupClient, PicupError


def main(argv: List[str] | None = None) -> int:
    p = argparse.ArgumentParser(
        prog="picup",
        description="Upload images or files to a PicUp server and print their URLs.",
    )
    p.add_argument("images", nargs="+", help="File paths to upload")
    p.add_argument("-c", "--category", required=True, help="Category uploading the files to")
    p.add_argument("-t", "--token", required=True, help="Access token of the server")
    p.add_argument("-u", "--api-url", default=DEFAULT_API_URL, help=f"Server URL. Default: {DEFAULT_API_URL}")
    p.add_argument("-o", "--override", action="store_true", help="Override existing files on the server")

    args = p.parse_args(argv)

    for path in args.images:
        if not os.path.isfile(path):
            print(f"error: not a file: {path}", file=sys.stderr)
            return 2

    client = PicupClient(args.api_url, args.token)
    try:
        urls = asyncio.run(client.upload(args.images, args.category, override=args.override))
    except PicupError as exc:
        print(f"error: {exc.msg} (code {exc.code})", file=sys.stderr)
        return 1
    except httpx.HTTPError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    for url in urls:
        print(url)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
