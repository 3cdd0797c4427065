"""Monitoring configuration for the app."""
from prometheus_client import Counter, Gauge, Histogram, start_http_server

# Lesson metrics
active_lessons = Gauge(
    "kidlingo_active_lessons",
    "Number of lessons currently being played",
)

lessons_started = Counter(
    "kidlingo_lessons_started_total",
    "Total number of lesson attempts started",
    ["lesson_id"],
)

lessons_resumed = Counter(
    "kidlingo_lessons_resumed_total",
    "Total number of lesson attempts resumed from a saved snapshot",
    ["lesson_id"],
)

lessons_completed = Counter(
    "kidlingo_lessons_completed_total",
    "Total number of lesson attempts completed",
    ["lesson_id"],
)

lesson_score = Histogram(
    "kidlingo_lesson_score_percent",
    "Score of completed lessons in percent",
    buckets=[25, 50, 70, 90, 100],
)

lesson_duration = Histogram(
    "kidlingo_lesson_duration_seconds",
    "Duration of completed lessons in seconds",
    buckets=[60, 180, 300, 600, 1800],  # 1min, 3min, 5min, 10min, 30min
)

# Exercise metrics
exercise_answers = Counter(
    "kidlingo_exercise_answers_total",
    "Total number of exercise answers",
    ["exercise_type", "result"],
)

adaptive_retries = Counter(
    "kidlingo_adaptive_retries_total",
    "Total number of missed exercises put back into the queue",
)

# Database metrics
persistence_errors = Counter(
    "kidlingo_persistence_errors_total",
    "Total number of failed progress writes",
    ["operation"],
)


def start_monitoring(port: int = 9090) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)
