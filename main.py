from __future__ import annotations

import argparse
import logging

from ollama_desk.app import DeskApp
from ollama_desk.constants import DEFAULT_BASE_URL, DEFAULT_STATE_PATH, DEFAULT_TIMEOUT, DEFAULT_VOICE


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Chat with models served by a local Ollama server and hear the replies.')
    parser.add_argument('--base-url', default=DEFAULT_BASE_URL, help='Base URL where Ollama serves its API.')
    parser.add_argument('--timeout', type=float, default=DEFAULT_TIMEOUT, help='HTTP timeout when talking to Ollama.')
    parser.add_argument('-v', '--voice', default=DEFAULT_VOICE, help='Kokoro voice used for speech.')
    parser.add_argument('-s', '--speed', type=float, default=1.0, help='Playback speed for synthesized speech.')
    parser.add_argument('--text-only', action='store_true', help='Disable speech output entirely.')
    parser.add_argument('--no-auto-speak', action='store_true', help='Do not read replies aloud automatically.')
    parser.add_argument('--state', default=DEFAULT_STATE_PATH, help='File where sessions and model settings are saved.')
    parser.add_argument('--verbose', action='store_true', help='Log debug output.')
    return parser.parse_args()


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )
    logging.getLogger('urllib3').setLevel(logging.WARNING)


def main() -> None:
    args = parse_args()
    setup_logging(args.verbose)
    app = DeskApp(args)
    app.run()


if __name__ == '__main__':
    main()
