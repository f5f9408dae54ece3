# run_kubelab_server.py
import argparse
import logging
import os

import uvicorn

from kubelab_sim.config import SimSettings

if __name__ == "__main__":
    settings = SimSettings()

    parser = argparse.ArgumentParser(description="KubeLab Sim Server Launcher")

    # Параметры симуляции: перекрывают KUBELAB_* из окружения
    parser.add_argument("--nodes", type=int, default=None, help="Initial node count")
    parser.add_argument("--tick", type=float, default=None, help="Tick interval, seconds")
    parser.add_argument("--no-auto-tick", action="store_true", help="Advance time only via POST /tick")

    # Стандартные настройки uvicorn
    parser.add_argument("--host", default="0.0.0.0", help="Bind host")
    parser.add_argument("--port", type=int, default=8000, help="Bind port")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    parser.add_argument("--log-level", default=settings.log_level, help="Log level")

    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper())
    log = logging.getLogger("launcher")

    # Сервер читает SimSettings сам, поэтому передаём через окружение
    # (иначе при --reload настройки потеряются в дочернем процессе)
    if args.nodes is not None:
        os.environ["KUBELAB_INITIAL_NODES"] = str(args.nodes)
    if args.tick is not None:
        os.environ["KUBELAB_TICK_INTERVAL"] = str(args.tick)
    if args.no_auto_tick:
        os.environ["KUBELAB_AUTO_TICK"] = "false"

    log.info(f"Starting kubelab-sim on {args.host}:{args.port}")
    uvicorn.run(
        "kubelab_sim.api.server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level.lower(),
    )
