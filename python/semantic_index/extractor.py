"""
Extractor - Classify files, pull text out of documents and route by language.

Uses pdftotext CLI for PDFs (5-10x faster than pypdf) with fallback
to pypdf when the CLI is unavailable or fails. Plain text and markdown
are read directly.
"""

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Optional, Tuple

from langdetect import DetectorFactory, detect
from langdetect.lang_detect_exception import LangDetectException
from PIL import Image, UnidentifiedImageError
from pypdf import PdfReader

from .config import IndexerConfig, get_config
from .models import ContentType, ExtractedText, Language
from .errors import ExtractionError


logger = logging.getLogger(__name__)

# langdetect is probabilistic; pin the seed so routing is deterministic
DetectorFactory.seed = 0

_PDFTOTEXT_AVAILABLE = shutil.which("pdftotext") is not None
if not _PDFTOTEXT_AVAILABLE:
    logger.debug("pdftotext not found, PDF extraction will use pypdf")

# Ethiopic, Ethiopic Supplement, Ethiopic Extended, Ethiopic Extended-A
_ALTERNATE_SCRIPT_RANGES = (
    (0x1200, 0x137F),
    (0x1380, 0x139F),
    (0x2D80, 0x2DDF),
    (0xAB00, 0xAB2F),
)


def _is_alternate_script(ch: str) -> bool:
    code = ord(ch)
    return any(lo <= code <= hi for lo, hi in _ALTERNATE_SCRIPT_RANGES)


class Extractor:
    """
    Text and image extractor.

    classify() never touches the disk. extract() and load_image() raise
    ExtractionError for anything they cannot read.
    """

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()

    def classify(self, path: Path | str) -> ContentType:
        """Decide the content category from the extension allow-lists."""
        ext = Path(path).suffix.lower()
        if ext in self.config.text_extensions:
            return ContentType.TEXT
        if ext in self.config.image_extensions:
            return ContentType.IMAGE
        return ContentType.UNSUPPORTED

    def extract(self, path: Path | str) -> ExtractedText:
        """
        Extract text and detect its language.

        Text longer than config.max_text_length is truncated, not rejected.
        """
        path = Path(path)
        if self.classify(path) is not ContentType.TEXT:
            raise ExtractionError(path, f"unsupported extension '{path.suffix}'")
        if not path.is_file():
            raise ExtractionError(path, "file does not exist")

        if path.suffix.lower() == ".pdf":
            text = self._extract_pdf(path)
        else:
            text = self._extract_text(path)

        truncated = False
        limit = self.config.max_text_length
        if len(text) > limit:
            logger.info(f"Truncating {path.name} from {len(text)} to {limit} characters")
            text = text[:limit]
            truncated = True

        return ExtractedText(
            path=path,
            text=text,
            language=self.detect_language(text),
            truncated=truncated,
        )

    def detect_language(self, text: str) -> Language:
        """
        Route a document by language.

        Ethiopic-script text goes to the alternate route when its share of
        letters reaches the configured threshold; otherwise langdetect
        separates English from everything else.
        """
        sample = text[: self.config.language_sample_chars]
        letters = [ch for ch in sample if ch.isalpha()]
        if not letters:
            return Language.OTHER

        alternate = sum(1 for ch in letters if _is_alternate_script(ch))
        if alternate / len(letters) >= self.config.alternate_script_threshold:
            return Language.ALTERNATE_SCRIPT

        try:
            code = detect(sample)
        except LangDetectException:
            return Language.OTHER
        return Language.PRIMARY if code == "en" else Language.OTHER

    def load_image(self, path: Path | str) -> Tuple[Image.Image, int, int]:
        """Open an image for embedding. Returns (RGB image, width, height)."""
        path = Path(path)
        if self.classify(path) is not ContentType.IMAGE:
            raise ExtractionError(path, f"not a supported image type '{path.suffix}'")
        if not path.is_file():
            raise ExtractionError(path, "file does not exist")
        try:
            with Image.open(path) as img:
                width, height = img.size
                rgb = img.convert("RGB")
        except (UnidentifiedImageError, OSError) as e:
            raise ExtractionError(path, f"cannot decode image: {e}") from e
        return rgb, width, height

    def _extract_pdf(self, path: Path) -> str:
        """Extract text from PDF using pdftotext CLI (fast) or pypdf."""
        if _PDFTOTEXT_AVAILABLE:
            text = self._extract_pdf_cli(path)
            if text is not None:
                return text
        return self._extract_pdf_pypdf(path)

    def _extract_pdf_cli(self, path: Path) -> Optional[str]:
        try:
            result = subprocess.run(
                ["pdftotext", "-layout", "-nopgbrk", str(path), "-"],
                capture_output=True,
                text=True,
                timeout=30,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.debug(f"pdftotext error for {path.name}: {e}")
            return None
        if result.returncode != 0:
            logger.debug(f"pdftotext failed for {path.name}: {result.stderr}")
            return None
        return result.stdout.strip()

    def _extract_pdf_pypdf(self, path: Path) -> str:
        try:
            reader = PdfReader(str(path))
            parts = [text for page in reader.pages if (text := page.extract_text())]
        except Exception as e:
            raise ExtractionError(path, f"PDF parse failed: {e}") from e
        return "\n".join(parts)

    def _extract_text(self, path: Path) -> str:
        """Read plain text file."""
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ExtractionError(path, str(e)) from e
