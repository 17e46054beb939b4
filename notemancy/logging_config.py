"""
Logging setup for notemancy.

The terminal stays quiet unless verbose output is asked for: the model
and vector-store libraries are noisy at import and load time. Separately,
every opened knowledge base appends its scan and index summaries to an
operations log in its config directory.
"""

import logging
import os
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path


OPS_LOG_FILENAME = "notemancy-ops.log"
OPS_LOG_MAX_BYTES = 1_000_000
OPS_LOG_BACKUPS = 3

# Third-party logger -> level while quiet
_QUIET_LEVELS = {
    "sentence_transformers": logging.ERROR,
    "transformers": logging.ERROR,
    "huggingface_hub": logging.ERROR,
    "chromadb": logging.ERROR,
    "lancedb": logging.WARNING,
}

# Environment read by the HuggingFace stack when the model loads
_QUIET_ENV = {
    "HF_HUB_DISABLE_PROGRESS_BARS": "1",
    "TRANSFORMERS_VERBOSITY": "error",
    "TOKENIZERS_PARALLELISM": "false",
}

_NOISY_MODULES = r"(sentence_transformers|transformers|huggingface_hub|torch)(\.|$)"


def configure_logging(verbose: bool = False) -> None:
    """
    Set terminal logging for a CLI run.

    Quiet mode raises the third-party loggers above their chatter and
    hides their warnings; verbose mode sends everything, notemancy's
    debug messages included, to stderr.
    """
    if not verbose:
        for key, value in _QUIET_ENV.items():
            os.environ.setdefault(key, value)
        warnings.filterwarnings("ignore", module=_NOISY_MODULES)
        for name, level in _QUIET_LEVELS.items():
            logging.getLogger(name).setLevel(level)
        return

    for key in _QUIET_ENV:
        os.environ.pop(key, None)
    warnings.filterwarnings("default", module=_NOISY_MODULES)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    if not any(getattr(h, "stream", None) is sys.stderr for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S",
        ))
        root.addHandler(handler)
    for name in ("notemancy", *_QUIET_LEVELS):
        logging.getLogger(name).setLevel(logging.DEBUG)


def attach_ops_log(config_dir: Path) -> RotatingFileHandler:
    """
    Start appending notemancy INFO records to ``<config_dir>/notemancy-ops.log``.

    The file rotates at OPS_LOG_MAX_BYTES. Pass the returned handler to
    detach_ops_log() when the knowledge base closes.
    """
    path = Path(config_dir) / OPS_LOG_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=OPS_LOG_MAX_BYTES, backupCount=OPS_LOG_BACKUPS)
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s", datefmt="%Y-%m-%d %H:%M:%S",
    ))

    package_logger = logging.getLogger("notemancy")
    package_logger.addHandler(handler)
    if not package_logger.isEnabledFor(logging.INFO):
        package_logger.setLevel(logging.INFO)
    return handler


def detach_ops_log(handler: RotatingFileHandler) -> None:
    logging.getLogger("notemancy").removeHandler(handler)
    handler.close()
