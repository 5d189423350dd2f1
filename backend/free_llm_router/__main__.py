import argparse
import json
import sys

import uvicorn

from free_llm_router.core.config import settings


def _serve(args: argparse.Namespace) -> int:
    uvicorn.run(
        "free_llm_router.main:app",
        host=args.host or settings.server_host,
        port=args.port or settings.server_port,
        reload=settings.server_reload,
    )
    return 0


def _sync(args: argparse.Namespace) -> int:
    from free_llm_router.core.database import AdminSessionLocal, Base, admin_engine
    from free_llm_router.core.logging import setup_logging
    from free_llm_router.services.catalog_sync_service import SyncCoordinator
    import free_llm_router.models  # noqa: F401

    setup_logging()
    Base.metadata.create_all(bind=admin_engine)
    result = SyncCoordinator(AdminSessionLocal).run()
    print(json.dumps(result.to_dict(), indent=2))
    return 1 if result.error else 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="free_llm_router")
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="run the HTTP API")
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)
    serve.set_defaults(handler=_serve)

    sync = subparsers.add_parser("sync", help="sync the free model catalog once and exit")
    sync.set_defaults(handler=_sync)

    args = parser.parse_args(argv)
    if args.command is None:
        args = parser.parse_args(["serve", *(argv or [])])
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
