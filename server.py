# server.py
import argparse
import logging

from aiohttp import web

from pulse_dsp.audio.context import AUTOPLAY_MODES, AutoplayPolicy
from pulse_dsp.config import AnalyzerConfig, ServerConfig
from pulse_dsp.engine import AudioEngine
from pulse_dsp.gate import AUTOPLAY_STRATEGIES
from pulse_dsp.http.server import create_app


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="pulse-dsp: audio signal server for a realtime renderer")
    p.add_argument("source", nargs="?", default=None, help="audio URL or file path")
    p.add_argument("--host", default=ServerConfig.host)
    p.add_argument("--port", type=int, default=ServerConfig.port)
    p.add_argument("--fps", type=int, default=AnalyzerConfig.fps)
    p.add_argument("--policy", choices=AUTOPLAY_MODES, default=ServerConfig.autoplay_policy)
    p.add_argument("--strategy", choices=AUTOPLAY_STRATEGIES, default=AnalyzerConfig.autoplay_strategy)
    p.add_argument("--no-loop", action="store_true", help="stop at the end of the track")
    p.add_argument("--debug", action="store_true")
    return p.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%H:%M:%S",
    )

    server_cfg = ServerConfig(
        host=args.host,
        port=args.port,
        autoplay_policy=args.policy,
        source_url=args.source,
    )
    analyzer_cfg = AnalyzerConfig(
        fps=args.fps,
        autoplay_strategy=args.strategy,
        loop=not args.no_loop,
    )

    engine = AudioEngine(analyzer_cfg, policy=AutoplayPolicy(mode=server_cfg.autoplay_policy))
    web.run_app(create_app(engine, server_cfg), host=server_cfg.host, port=server_cfg.port)


if __name__ == "__main__":
    main()
