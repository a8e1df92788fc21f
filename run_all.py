# run_all.py
"""Local development: Redis, the API and (in queue mode) the arq worker in one terminal."""
import asyncio
import sys

from nearbuy.core.config import settings


async def run_process(name: str, cmd: list):
    """
    Runs a subprocess and streams logs to console.
    """
    print(f"▶ Starting {name}: {' '.join(cmd)}")

    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    async def _pipe_reader(stream, prefix):
        while True:
            line = await stream.readline()
            if not line:
                break
            print(f"[{prefix}] {line.decode().rstrip()}")

    await asyncio.gather(
        _pipe_reader(process.stdout, name),
        _pipe_reader(process.stderr, name),
    )


async def main():
    processes = [run_process("REDIS", ["redis-server"])]

    # Inline mode handles messages inside the API process; no worker needed
    if settings.INBOUND_MODE == "queue":
        processes.append(run_process("ARQ", [sys.executable, "start_worker.py"]))

    uvicorn_cmd = [
        sys.executable,
        "-m",
        "uvicorn",
        "nearbuy.main:app",
        "--reload",
        "--host", "0.0.0.0",
        "--port", "8000",
    ]
    processes.append(run_process("APP", uvicorn_cmd))

    print(f"▶ Inbound mode: {settings.INBOUND_MODE}")
    await asyncio.gather(*processes)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("Shutting down...")
