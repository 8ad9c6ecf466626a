"""Websocket stand-in for the ESP32 board, for running the monitor without hardware."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import math
import random
import time

import websockets

log = logging.getLogger("mock_device")


class MockBoard:
    def __init__(self, dialect: str) -> None:
        self.dialect = dialect
        self.relays = [False] * 4
        self._t0 = time.monotonic()

    def status_line(self) -> str:
        return "STATE:" + ",".join("1" if on else "0" for on in self.relays)

    def handle(self, command: str) -> str:
        command = command.strip().upper()
        if command == "ALL_ON":
            self.relays = [True] * 4
        elif command == "ALL_OFF":
            self.relays = [False] * 4
        elif command.startswith("RELAY") and command.endswith(("_ON", "_OFF")):
            idx = int(command[5]) - 1
            if 0 <= idx < 4:
                self.relays[idx] = command.endswith("_ON")
        elif command != "STATUS":
            log.warning("Unknown command %r", command)
        return self.status_line()

    def telemetry(self) -> dict:
        t = time.monotonic() - self._t0
        accel = [round(random.gauss(0.0, 0.3), 3), round(random.gauss(0.0, 0.3), 3), round(9.8 + math.sin(t), 3)]
        if self.dialect == "legacy":
            return {
                "VB1": round(12.0 + random.uniform(-0.2, 0.2), 2),
                "VB2": round(48.0 + random.uniform(-1.0, 1.0), 2),
                "VB3": round(24.0 + random.uniform(-0.5, 0.5), 2),
                "dsTemperature": round(45.0 + 10 * math.sin(t / 30), 1),
                "objectTemp": round(38.0 + random.uniform(-1, 1), 1),
                "ambientTemp": 24.5,
                "mlxTemperature": round(31.0 + random.uniform(-0.5, 0.5), 1),
                "accel": accel,
                "orientation": [round(t * 3 % 360, 1), 0.0, 0.0],
                "lidarDistance": round(12.0 + random.uniform(-0.5, 0.5), 2),
                "lidarQuality": random.randint(80, 100),
            }
        return {
            "voltage": round(48.0 + random.uniform(-1.0, 1.0), 2),
            "object_temp": round(38.0 + random.uniform(-1, 1), 1),
            "gap_height": round(12.0 + random.uniform(-0.5, 0.5), 2),
            "acceleration": accel,
            "orientation": [round(t * 3 % 360, 1), 0.0, 0.0],
            "calibration": [3, 3, random.randint(1, 3)],
            "relayStates": {f"relay{i + 1}": on for i, on in enumerate(self.relays)},
        }


async def serve(host: str, port: int, dialect: str, rate_hz: float) -> None:
    board = MockBoard(dialect)

    async def handler(ws):
        log.info("Client connected")

        async def stream():
            while True:
                await ws.send(json.dumps(board.telemetry()))
                await asyncio.sleep(1.0 / rate_hz)

        sender = asyncio.create_task(stream())
        try:
            async for message in ws:
                for command in str(message).splitlines():
                    if command.strip():
                        await ws.send(board.handle(command))
        except websockets.ConnectionClosed:
            pass
        finally:
            sender.cancel()
            log.info("Client disconnected")

    async with websockets.serve(handler, host, port):
        log.info("Mock board on ws://%s:%d (dialect=%s)", host, port, dialect)
        await asyncio.Future()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--host", default="localhost")
    parser.add_argument("--port", type=int, default=8080)
    parser.add_argument("--dialect", choices=("legacy", "current"), default="current")
    parser.add_argument("--rate", type=float, default=1.0, help="Telemetry messages per second")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        asyncio.run(serve(args.host, args.port, args.dialect, args.rate))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
