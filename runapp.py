import subprocess
import time
import os
import sys


def run_services():
    base_dir = os.path.dirname(os.path.abspath(__file__))
    backend_dir = os.path.join(base_dir, "backend")

    print("Starting services...")

    # Payment webhook / return-URL API
    print("Starting Payment API (FastAPI)...")
    api_process = subprocess.Popen(
        [sys.executable, "-m", "uvicorn", "main:app", "--host", "0.0.0.0", "--port", "8000"],
        cwd=backend_dir,
    )

    # Telegram bot (long polling)
    print("Starting Telegram bot...")
    bot_process = subprocess.Popen(
        [sys.executable, "bot.py"],
        cwd=backend_dir,
    )

    print("\nServices are running!")
    print("   Payment API:  http://127.0.0.1:8000")
    print("   Telegram bot: polling")
    print("\nPress Ctrl+C to stop both services.\n")

    try:
        while True:
            if bot_process.poll() is not None:
                print(f"Bot exited with code {bot_process.returncode}")
                break
            time.sleep(1)
    except KeyboardInterrupt:
        print("\n\nStopping services...")
    finally:
        api_process.terminate()
        bot_process.terminate()

        if sys.platform == "win32":
            subprocess.run(["taskkill", "/F", "/T", "/PID", str(api_process.pid)], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
            subprocess.run(["taskkill", "/F", "/T", "/PID", str(bot_process.pid)], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)

        print("All services stopped.")


if __name__ == "__main__":
    run_services()
