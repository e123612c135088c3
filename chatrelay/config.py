import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(f"Invalid integer for {env_var}: {raw!r}") from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(f"Invalid float for {env_var}: {raw!r}") from None


def _csv(env_var: str, default: str) -> list:
    raw = os.getenv(env_var, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# Model backend - where the tokens come from
MODEL_CONFIG = {
    # "http" (llama-server / Ollama / OpenAI-compatible) or "subprocess" (llama.cpp CLI)
    "BACKEND": os.getenv("MODEL_BACKEND", "http"),

    # Streaming endpoint, usually a tunnel URL pointing at the local machine
    "API_URL": os.getenv("MODEL_API_URL", "http://localhost:8080/completion"),

    # "completion" sends a flat prompt, "chat" sends a message list
    "PAYLOAD_STYLE": os.getenv("MODEL_PAYLOAD_STYLE", "completion"),

    "MODEL": os.getenv("MODEL_NAME", "mistral-7b-instruct"),
    "TEMPERATURE": _safe_float("MODEL_TEMPERATURE", "0.7"),
    "N_PREDICT": _safe_int("MODEL_N_PREDICT", "200"),

    # Per-attempt timeout in seconds, and how many attempts before giving up
    "TIMEOUT": _safe_float("MODEL_TIMEOUT", "90"),
    "MAX_ATTEMPTS": _safe_int("MODEL_MAX_ATTEMPTS", "3"),
    "RETRY_BACKOFF": _safe_float("MODEL_RETRY_BACKOFF", "0"),

    # Subprocess backend
    "BINARY": os.getenv("LLAMA_BINARY", "llama-cli"),
    "MODEL_PATH": os.getenv("LLAMA_MODEL_PATH", "models/mistral-7b-instruct-v0.2.Q4_0.gguf"),
    "THREADS": _safe_int("LLAMA_THREADS", "4"),
    "EXTRA_ARGS": _csv("LLAMA_EXTRA_ARGS", "--no-display-prompt"),
}


RELAY_CONFIG = {
    # Prior exchanges of the same session sent upstream as context
    "HISTORY_TURNS": _safe_int("HISTORY_TURNS", "5"),
    "HEARTBEAT_INTERVAL": _safe_float("SSE_HEARTBEAT_INTERVAL", "15"),

    # Delay between words when replaying a canned reply as a stream
    "CANNED_TOKEN_DELAY": _safe_float("CANNED_TOKEN_DELAY", "0.05"),

    # Prompts about the portfolio owner get the canned bio and ping the owner
    "ALERT_KEYWORDS": _csv(
        "ALERT_KEYWORDS", "quien eres,quién eres,jose manaure,josé manaure,tu perfil,curriculum"),
    "ALERT_TITLE": "Consulta sobre el perfil",

    "PERSONA": """Eres un asistente IA. Responde siempre en español, con espacios correctos, puntuación y formato legible.
El usuario es José Manaure, desarrollador full stack con experiencia en React, Node.js y MongoDB, experto en UI/UX y testing de aplicaciones.
Siempre que respondas, da ejemplos o información sobre José y sus proyectos.""",

    "CANNED_BIO": (
        "José Manaure es desarrollador full stack con más de 15 años de experiencia. "
        "Trabaja con React, Node.js y MongoDB, y cuida especialmente la experiencia de usuario "
        "y el testing de aplicaciones. Si quieres colaborar con él, escribe \"quiero contratar tu servicio\"."
    ),
}


CONTACT_CONFIG = {
    "TRIGGER_KEYWORDS": _csv(
        "CONTACT_TRIGGER_KEYWORDS",
        "contratar,servicio,precio,presupuesto,trabajar contigo,cotización"),

    # Order matters: each answer is stored under the field at the current position
    "FIELDS": [
        ("nombre", "¿Cuál es tu nombre?"),
        ("apellido", "¿Cuál es tu apellido?"),
        ("email", "¿Cuál es tu email?"),
        ("asunto", "¿Cuál es el asunto o mensaje que quieres dejarme?"),
    ],

    "ACKNOWLEDGEMENT": "¡Gracias! Tu mensaje ha sido enviado. Te contactaré pronto.",
    "NOTIFY_TITLE": "Formulario completado",

    # Idle contact flows older than this (seconds) are forgotten
    "SESSION_TTL": _safe_float("CONTACT_SESSION_TTL", "1800"),
}


NOTIFY_CONFIG = {
    # n8n webhook; empty disables notifications
    "WEBHOOK_URL": os.getenv("N8N_WEBHOOK_URL", ""),
    "TIMEOUT": _safe_float("NOTIFY_TIMEOUT", "10"),
    "MAX_ATTEMPTS": _safe_int("NOTIFY_MAX_ATTEMPTS", "3"),
    "WORKERS": _safe_int("NOTIFY_WORKERS", "2"),
}


GEO_CONFIG = {
    "API_URL": os.getenv("GEO_API_URL", "https://ipapi.co"),
    "TIMEOUT": _safe_float("GEO_TIMEOUT", "5"),
}


SERVER_CONFIG = {
    "DATABASE_URL": os.getenv("DATABASE_URL", "sqlite:///./chat.db"),
    "ALLOWED_ORIGINS": _csv("ALLOWED_ORIGINS", "http://localhost:3000,https://pfweb-nu.vercel.app"),
    "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO"),

    # Signs the visitor identity cookie
    "SECRET_KEY": os.getenv("SECRET_KEY", "change-me"),
    "ALGORITHM": "HS256",
    "VISITOR_COOKIE_NAME": os.getenv("VISITOR_COOKIE_NAME", "visitor_token"),
    "VISITOR_COOKIE_MAX_AGE": _safe_int("VISITOR_COOKIE_MAX_AGE", str(60 * 60 * 24 * 365)),
}


# Local answers served without touching the model
DICTIONARY = [
    {"question": "hola", "answer": "¡Hola! 👋 Soy tu asistente virtual. Pregúntame sobre mis proyectos, experiencia o tecnologías."},
    {"question": "experiencia", "answer": "Tengo más de 15 años de experiencia como desarrollador full stack, trabajando con React, Node.js y MongoDB."},
    {"question": "react", "answer": "React es mi principal herramienta para construir interfaces dinámicas y rápidas con excelente experiencia de usuario."},
    {"question": "node", "answer": "Node.js me permite crear el backend de mis aplicaciones full stack, gestionando APIs y servidores eficientemente."},
    {"question": "mongodb", "answer": "MongoDB lo uso como base de datos NoSQL escalable y flexible."},
    {"question": "tailwind", "answer": "TailwindCSS me permite diseñar interfaces limpias y responsivas rápidamente."},
]


def validate_config() -> None:
    """Reject settings that would make the relay misbehave at runtime."""
    if MODEL_CONFIG["BACKEND"] not in ("http", "subprocess"):
        raise ValueError(
            f"MODEL_BACKEND must be 'http' or 'subprocess', got {MODEL_CONFIG['BACKEND']!r}")
    if MODEL_CONFIG["PAYLOAD_STYLE"] not in ("completion", "chat"):
        raise ValueError(
            f"MODEL_PAYLOAD_STYLE must be 'completion' or 'chat', got {MODEL_CONFIG['PAYLOAD_STYLE']!r}")

    for name, value in [
        ("MODEL_MAX_ATTEMPTS", MODEL_CONFIG["MAX_ATTEMPTS"]),
        ("NOTIFY_MAX_ATTEMPTS", NOTIFY_CONFIG["MAX_ATTEMPTS"]),
        ("NOTIFY_WORKERS", NOTIFY_CONFIG["WORKERS"]),
    ]:
        if value < 1:
            raise ValueError(f"{name} must be >= 1, got {value}")

    for name, value in [
        ("MODEL_TIMEOUT", MODEL_CONFIG["TIMEOUT"]),
        ("NOTIFY_TIMEOUT", NOTIFY_CONFIG["TIMEOUT"]),
        ("GEO_TIMEOUT", GEO_CONFIG["TIMEOUT"]),
        ("SSE_HEARTBEAT_INTERVAL", RELAY_CONFIG["HEARTBEAT_INTERVAL"]),
        ("CONTACT_SESSION_TTL", CONTACT_CONFIG["SESSION_TTL"]),
    ]:
        if value <= 0:
            raise ValueError(f"{name} must be > 0, got {value}")

    for name, value in [
        ("MODEL_RETRY_BACKOFF", MODEL_CONFIG["RETRY_BACKOFF"]),
        ("CANNED_TOKEN_DELAY", RELAY_CONFIG["CANNED_TOKEN_DELAY"]),
        ("HISTORY_TURNS", RELAY_CONFIG["HISTORY_TURNS"]),
    ]:
        if value < 0:
            raise ValueError(f"{name} must be >= 0, got {value}")


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, SERVER_CONFIG["LOG_LEVEL"].upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info("Relay configured with %s backend at %s",
                MODEL_CONFIG["BACKEND"],
                MODEL_CONFIG["API_URL"] if MODEL_CONFIG["BACKEND"] == "http" else MODEL_CONFIG["BINARY"])
