import asyncio
import json
import os
import socket
import subprocess
import sys
import time
from pathlib import Path

import httpx
import websockets

ROOT = Path(__file__).resolve().parents[1]
HOST = "127.0.0.1"
PORT = int(os.getenv("SMOKE_PORT", "9121"))
REPORT_DIR = ROOT / "qa" / "reports"
REPORT_PATH = REPORT_DIR / "session_smoke_report.json"
QUESTION = "Tell me about a project you are proud of?"


def _wait_port(host: str, port: int, timeout_sec: float = 20.0) -> bool:
    end_at = time.time() + timeout_sec
    while time.time() < end_at:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(0.5)
            if sock.connect_ex((host, port)) == 0:
                return True
        time.sleep(0.2)
    return False


def _start_backend(port: int) -> subprocess.Popen:
    env = dict(os.environ)
    env["ENV"] = "development"
    env["USE_REDIS_SESSION_STORE"] = "false"

    cmd = [
        sys.executable,
        "-m",
        "uvicorn",
        "live_interview.main:app",
        "--host",
        HOST,
        "--port",
        str(port),
    ]
    return subprocess.Popen(
        cmd,
        cwd=str(ROOT),
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )


async def _recv_until(ws, wanted_types: set[str], timeout_sec: float = 30.0):
    loop = asyncio.get_running_loop()
    end_at = loop.time() + timeout_sec
    seen = []
    while loop.time() < end_at:
        remaining = max(0.1, end_at - loop.time())
        try:
            msg = await asyncio.wait_for(ws.recv(), timeout=remaining)
        except (asyncio.TimeoutError, websockets.ConnectionClosed):
            break
        data = json.loads(msg)
        event_type = str(data.get("type") or "")
        seen.append(event_type)
        if event_type in wanted_types:
            return data, seen
    return None, seen


async def _run_smoke() -> dict:
    async with httpx.AsyncClient(base_url=f"http://{HOST}:{PORT}", timeout=30.0) as http:
        created = await http.post(
            "/api/interview/session",
            json={
                "role": "assistant",
                "context": {"companyName": "Acme", "roleTitle": "Backend Engineer", "interviewType": "behavioral"},
            },
        )
        if created.status_code != 200:
            return {"ok": False, "stage": "create_session", "status": created.status_code, "body": created.text}
        session_id = created.json()["sessionId"]

        ws_url = f"ws://{HOST}:{PORT}/ws/interview?sessionId={session_id}&role=assistant"
        async with websockets.connect(ws_url) as ws:
            await ws.send(json.dumps({"type": "analyze_question", "question": QUESTION}))
            suggestion, seen = await _recv_until(ws, {"suggestion"})

        ended = await http.post(f"/api/interview/sessions/{session_id}/end")

    ok = (
        suggestion is not None
        and str(suggestion.get("context") or "") == QUESTION
        and ended.status_code == 200
        and ended.json().get("status") == "completed"
    )
    return {
        "ok": ok,
        "session_id": session_id,
        "seen": seen,
        "suggestion_fallback": bool((suggestion or {}).get("confidence") == 0.6),
    }


def _stop_process(proc: subprocess.Popen) -> None:
    if proc.poll() is not None:
        return
    proc.terminate()
    try:
        proc.wait(timeout=6)
    except subprocess.TimeoutExpired:
        proc.kill()


def _write_report(report: dict) -> None:
    REPORT_PATH.write_text(json.dumps(report, indent=2), encoding="utf-8")
    print(json.dumps(report, indent=2))


def main() -> None:
    REPORT_DIR.mkdir(parents=True, exist_ok=True)
    started = time.time()

    if not str(os.getenv("OPENAI_API_KEY") or "").strip():
        _write_report({
            "generated_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "all_pass": False,
            "error": "OPENAI_API_KEY is not set; the smoke run talks to the real realtime backend",
        })
        sys.exit(1)

    proc = _start_backend(PORT)
    try:
        if not _wait_port(HOST, PORT, timeout_sec=25):
            _write_report({
                "generated_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
                "duration_sec": round(time.time() - started, 2),
                "all_pass": False,
                "error": "Backend did not become ready",
            })
            sys.exit(1)

        result = asyncio.run(_run_smoke())
        report = {
            "generated_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "duration_sec": round(time.time() - started, 2),
            "all_pass": bool(result.get("ok")),
            "result": result,
            "backend": {"port": PORT, "return_code": proc.poll()},
        }
        _write_report(report)
        if not report["all_pass"]:
            sys.exit(1)
    finally:
        _stop_process(proc)


if __name__ == "__main__":
    main()
