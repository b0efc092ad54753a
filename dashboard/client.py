"""HTTP and DataFrame helpers for the operator dashboard."""
import os
import random
import uuid
from typing import Optional

import pandas as pd
import requests

DEFAULT_BACKEND_URL = "http://127.0.0.1:8080"

CATEGORY_COLUMNS = [
    "category", "total_cards", "accepted_cards", "rejected_cards",
    "success_rate", "avg_decision_time", "avg_completion_time", "unique_sessions",
]
PLATFORM_COLUMNS = ["platform", "total_sessions", "unique_users"]

BYTES_PER_MB = 1024 * 1024

DEMO_CATEGORIES = ["Phishing", "Passwords", "Physical Security", "Social Media"]
DEMO_PLATFORMS = [("Android", "1080x1920"), ("iOS", "1170x2532"), ("WebGL", "1920x1080")]


class DashboardAuthError(Exception):
    """The backend rejected the admin secret."""


def get_backend_url() -> str:
    """Backend URL from env var, falling back to localhost."""
    env_url = os.getenv("BACKEND_URL")
    if env_url:
        return env_url.rstrip("/")
    return DEFAULT_BACKEND_URL


def check_backend_health(base_url: str) -> bool:
    """Check if backend is running (longer timeout for cloud cold starts)."""
    try:
        response = requests.get(f"{base_url}/health", timeout=10)
        return response.status_code == 200 and response.json().get("status") == "ok"
    except requests.exceptions.RequestException:
        return False


def fetch_stats(base_url: str, admin_secret: str) -> Optional[dict]:
    """Fetch the stats snapshot.

    Returns None when the backend is unreachable or errors; raises
    DashboardAuthError when the secret is rejected so the UI can say so.
    """
    try:
        response = requests.get(
            f"{base_url}/api/analytics/stats",
            headers={"X-Admin-Secret": admin_secret},
            timeout=10,
        )
    except requests.exceptions.RequestException:
        return None

    if response.status_code == 401:
        raise DashboardAuthError(response.json().get("error", "Unauthorized"))
    if response.status_code != 200:
        return None
    return response.json()


def memory_megabytes(memory_bytes: float) -> float:
    """The game client reports managed heap size in bytes."""
    return memory_bytes / BYTES_PER_MB


def categories_frame(stats: dict) -> pd.DataFrame:
    rows = stats.get("statistics", {}).get("categories") or []
    return pd.DataFrame(rows, columns=CATEGORY_COLUMNS)


def platforms_frame(stats: dict) -> pd.DataFrame:
    rows = stats.get("statistics", {}).get("platforms") or []
    return pd.DataFrame(rows, columns=PLATFORM_COLUMNS)


def sessions_frame(stats: dict) -> pd.DataFrame:
    """Raw sessions with parsed timestamps and an `ended` flag."""
    rows = stats.get("raw_data", {}).get("sessions") or []
    df = pd.DataFrame(rows)
    if df.empty:
        return df
    df["created_at"] = pd.to_datetime(df["created_at"], utc=True, format="ISO8601")
    df["ended_at"] = pd.to_datetime(df["ended_at"], utc=True, format="ISO8601")
    df["ended"] = df["ended_at"].notna()
    return df


def daily_sessions_frame(stats: dict) -> pd.DataFrame:
    """Sessions started per calendar day (UTC), from the server aggregate."""
    rows = stats.get("statistics", {}).get("daily_sessions") or []
    df = pd.DataFrame(rows, columns=["date", "sessions"])
    if not df.empty:
        df["date"] = pd.to_datetime(df["date"]).dt.date
    return df


def _post(base_url: str, path: str, payload: dict, expected_status: int = 201):
    """POST to the ingestion API; returns an error message or None."""
    try:
        response = requests.post(f"{base_url}/api/analytics{path}", json=payload, timeout=5)
    except requests.exceptions.RequestException as e:
        return f"Request to {path} failed: {e}"
    if response.status_code != expected_status:
        return f"{path} returned {response.status_code}: {response.text}"
    return None


def generate_demo_sessions(base_url: str, n_sessions: int = 5, seed: Optional[int] = None):
    """Post a handful of plausible sessions through the ingestion API.

    Returns (success: bool, message: str, count: int).
    """
    rng = random.Random(seed)
    created_count = 0

    for _ in range(n_sessions):
        session_id = str(uuid.UUID(int=rng.getrandbits(128)))
        platform, resolution = rng.choice(DEMO_PLATFORMS)
        error = _post(base_url, "/session", {
            "session_id": session_id,
            "user_id": f"demo-user-{rng.randint(1, 3)}",
            "platform": platform,
            "resolution": resolution,
        })
        if error:
            return False, f"Failed to create session: {error}", created_count

        category = rng.choice(DEMO_CATEGORIES)
        accepted = 0
        durations = []
        for card in range(4):
            success = rng.random() < 0.7
            duration = round(rng.uniform(0.5, 4.0), 2)
            end_x = 300.0 if success else -300.0
            accepted += int(success)
            durations.append(duration)
            error = _post(base_url, "/event", {
                "session_id": session_id,
                "event_type": "card_swipe",
                "card_id": f"{category.lower().replace(' ', '-')}-{card + 1:02d}",
                "category": category,
                "direction": "right" if end_x > 0 else "left",
                "success": success,
                "duration": duration,
                "start_x": 0.0,
                "end_x": end_x,
                "max_rotation": round(rng.uniform(5, 25), 1),
            })
            if error:
                return False, f"Failed to post event: {error}", created_count

        # memory_usage is in bytes, as the game client reports it
        error = _post(base_url, "/performance", {
            "session_id": session_id,
            "fps": round(rng.uniform(45, 60), 1),
            "memory_usage": rng.randint(200, 600) * 1024 * 1024,
            "cpu_usage": round(rng.uniform(10, 60), 1),
            "gpu_usage": round(rng.uniform(10, 60), 1),
            "network_latency": round(rng.uniform(30, 150), 1),
        })
        if error:
            return False, f"Failed to post performance metrics: {error}", created_count

        error = _post(base_url, "/category", {
            "session_id": session_id,
            "category_name": category,
            "total_cards": len(durations),
            "accepted_cards": accepted,
            "rejected_cards": len(durations) - accepted,
            "average_decision_time": sum(durations) / len(durations),
            "completion_time": round(sum(durations)),
        })
        if error:
            return False, f"Failed to post category stats: {error}", created_count

        error = _post(base_url, "/session/end", {
            "session_id": session_id,
            "session_duration": round(sum(durations)),
            "total_cards_processed": len(durations),
            "total_categories_completed": 1,
            "average_decision_time": round(sum(durations) / len(durations), 2),
            "success_rate": round(accepted / len(durations), 2),
        }, expected_status=200)
        if error:
            return False, f"Failed to end session {session_id}: {error}", created_count

        created_count += 1

    return True, f"Generated {created_count} demo sessions.", created_count
