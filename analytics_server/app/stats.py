"""Aggregate statistics for the operator stats endpoint."""
from typing import Any, Dict, List

from sqlalchemy import and_, case, func, select, true

from .db import Store
from .models import CategoryStat, GameEvent, GameSession, PerformanceMetric

CARD_SWIPE = "card_swipe"


def _rate(part: float, whole: float) -> float:
    """Percentage with a zero guard."""
    return (part / whole) * 100 if whole else 0.0


def _avg(column):
    # AVG over an empty table is NULL; COALESCE keeps missing values at 0
    return func.avg(func.coalesce(column, 0))


def session_statistics(store: Store) -> Dict[str, Any]:
    row = store.query_one(
        select(
            func.count().label("total_sessions"),
            func.count(GameSession.ended_at).label("ended_sessions"),
        ).select_from(GameSession)
    )
    return {
        "total_sessions": row["total_sessions"] or 0,
        "ended_sessions": row["ended_sessions"] or 0,
    }


def performance_statistics(store: Store) -> Dict[str, Any]:
    row = store.query_one(
        select(
            func.count().label("total_samples"),
            _avg(PerformanceMetric.fps).label("avg_fps"),
            _avg(PerformanceMetric.memory_usage).label("avg_memory_usage"),
            _avg(PerformanceMetric.cpu_usage).label("avg_cpu_usage"),
            _avg(PerformanceMetric.gpu_usage).label("avg_gpu_usage"),
            _avg(PerformanceMetric.network_latency).label("avg_network_latency"),
        ).select_from(PerformanceMetric)
    )
    return {
        "total_samples": row["total_samples"] or 0,
        "avg_fps": float(row["avg_fps"] or 0.0),
        "avg_memory_usage": float(row["avg_memory_usage"] or 0.0),
        "avg_cpu_usage": float(row["avg_cpu_usage"] or 0.0),
        "avg_gpu_usage": float(row["avg_gpu_usage"] or 0.0),
        "avg_network_latency": float(row["avg_network_latency"] or 0.0),
    }


def event_statistics(store: Store) -> Dict[str, Any]:
    is_swipe = GameEvent.event_type == CARD_SWIPE
    distance = func.abs(func.coalesce(GameEvent.end_x, 0) - func.coalesce(GameEvent.start_x, 0))

    row = store.query_one(
        select(
            func.count().label("total_events"),
            func.count(case((is_swipe, 1))).label("total_swipes"),
            func.count(case((and_(is_swipe, GameEvent.success == true()), 1))).label("successful_swipes"),
            func.sum(case((is_swipe, func.coalesce(GameEvent.duration, 0)))).label("total_swipe_duration"),
            func.avg(case((is_swipe, func.coalesce(GameEvent.duration, 0)))).label("avg_swipe_duration"),
            func.avg(case((is_swipe, distance))).label("avg_swipe_distance"),
            func.avg(case((is_swipe, func.coalesce(GameEvent.max_rotation, 0)))).label("avg_rotation"),
        ).select_from(GameEvent)
    )

    total_swipes = row["total_swipes"] or 0
    successful_swipes = row["successful_swipes"] or 0
    return {
        "total_events": row["total_events"] or 0,
        "total_swipes": total_swipes,
        "successful_swipes": successful_swipes,
        "swipe_success_rate": _rate(successful_swipes, total_swipes),
        "total_swipe_duration": float(row["total_swipe_duration"] or 0.0),
        "avg_swipe_duration": float(row["avg_swipe_duration"] or 0.0),
        "avg_swipe_distance": float(row["avg_swipe_distance"] or 0.0),
        "avg_rotation": float(row["avg_rotation"] or 0.0),
    }


def category_statistics(store: Store) -> List[Dict[str, Any]]:
    total_cards = func.coalesce(func.sum(CategoryStat.total_cards), 0).label("total_cards")
    rows = store.query(
        select(
            CategoryStat.category_name,
            total_cards,
            func.coalesce(func.sum(CategoryStat.accepted_cards), 0).label("accepted_cards"),
            func.coalesce(func.sum(CategoryStat.rejected_cards), 0).label("rejected_cards"),
            _avg(CategoryStat.average_decision_time).label("avg_decision_time"),
            _avg(CategoryStat.completion_time).label("avg_completion_time"),
            func.count(func.distinct(CategoryStat.session_id)).label("unique_sessions"),
        )
        .group_by(CategoryStat.category_name)
        .order_by(total_cards.desc(), CategoryStat.category_name)
    )

    categories = []
    for row in rows:
        total = int(row["total_cards"])
        accepted = int(row["accepted_cards"])
        categories.append({
            "category": row["category_name"],
            "total_cards": total,
            "accepted_cards": accepted,
            "rejected_cards": int(row["rejected_cards"]),
            "success_rate": _rate(accepted, total),
            "avg_decision_time": float(row["avg_decision_time"] or 0.0),
            "avg_completion_time": float(row["avg_completion_time"] or 0.0),
            "unique_sessions": row["unique_sessions"],
        })
    return categories


def platform_statistics(store: Store) -> List[Dict[str, Any]]:
    total_sessions = func.count().label("total_sessions")
    rows = store.query(
        select(
            GameSession.platform,
            total_sessions,
            func.count(func.distinct(GameSession.user_id)).label("unique_users"),
        )
        .group_by(GameSession.platform)
        .order_by(total_sessions.desc(), GameSession.platform)
    )
    return [dict(row) for row in rows]


def daily_session_statistics(store: Store) -> List[Dict[str, Any]]:
    """Sessions started per calendar day of the stored timestamp."""
    day = func.date(GameSession.created_at).label("day")
    rows = store.query(
        select(day, func.count().label("sessions"))
        .select_from(GameSession)
        .group_by(day)
        .order_by(day)
    )
    # SQLite returns a string, MySQL/Postgres a date
    return [{"date": str(row["day"]), "sessions": row["sessions"]} for row in rows]


def aggregated_statistics(store: Store) -> Dict[str, Any]:
    """Run each aggregate as its own query; no cross-table snapshot is needed."""
    return {
        "sessions": session_statistics(store),
        "performance": performance_statistics(store),
        "events": event_statistics(store),
        "categories": category_statistics(store),
        "platforms": platform_statistics(store),
        "daily_sessions": daily_session_statistics(store),
    }


def raw_data(store: Store, limit: int) -> Dict[str, Any]:
    """Most recent raw records, newest first."""
    sessions = store.query(
        select(
            GameSession.session_id,
            GameSession.user_id,
            GameSession.platform,
            GameSession.resolution,
            GameSession.device_model,
            GameSession.os_version,
            GameSession.created_at,
            GameSession.ended_at,
            GameSession.session_duration,
            GameSession.total_cards_processed,
            GameSession.total_categories_completed,
            GameSession.average_decision_time,
            GameSession.success_rate,
        )
        .order_by(GameSession.created_at.desc(), GameSession.id.desc())
        .limit(limit)
    )
    performance = store.query(
        select(
            PerformanceMetric.session_id,
            PerformanceMetric.fps,
            PerformanceMetric.memory_usage,
            PerformanceMetric.cpu_usage,
            PerformanceMetric.gpu_usage,
            PerformanceMetric.network_latency,
            PerformanceMetric.timestamp,
        )
        .order_by(PerformanceMetric.timestamp.desc(), PerformanceMetric.id.desc())
        .limit(limit)
    )
    events = store.query(
        select(
            GameEvent.session_id,
            GameEvent.event_type,
            GameEvent.card_id,
            GameEvent.category,
            GameEvent.direction,
            GameEvent.success,
            GameEvent.duration,
            GameEvent.start_x,
            GameEvent.start_y,
            GameEvent.end_x,
            GameEvent.end_y,
            GameEvent.max_rotation,
            GameEvent.created_at,
        )
        .order_by(GameEvent.created_at.desc(), GameEvent.id.desc())
        .limit(limit)
    )
    return {
        "sessions": [dict(row) for row in sessions],
        "performance": [dict(row) for row in performance],
        "events": [dict(row) for row in events],
    }
