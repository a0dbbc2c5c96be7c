"""Document parsing: turn supported files into raw text for chunking.

Handles:
- Plain text files
- Markdown with YAML frontmatter (frontmatter is stripped)
- PDF text extraction, page by page
"""
import re
from pathlib import Path
from typing import Any, Dict, FrozenSet, Tuple

import structlog
import yaml
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from docrag.errors import ParseFailure

logger = structlog.get_logger()


class DocumentParser:
    """Parser for text, markdown and PDF documents."""

    SUPPORTED_EXTENSIONS: FrozenSet[str] = frozenset({".txt", ".md", ".markdown", ".pdf"})

    # Regex for YAML frontmatter (must be at start of file)
    FRONTMATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)

    def supports(self, file_path: Path) -> bool:
        """Whether the file's extension is one this parser handles."""
        return file_path.suffix.lower() in self.SUPPORTED_EXTENSIONS

    def parse(self, file_path: Path) -> str:
        """Extract the text of a document.

        Args:
            file_path: Path to the document

        Returns:
            Raw document text (may be empty)

        Raises:
            ParseFailure: If the file is unsupported, unreadable or malformed
        """
        suffix = file_path.suffix.lower()
        if suffix not in self.SUPPORTED_EXTENSIONS:
            raise ParseFailure(file_path, f"unsupported extension {suffix!r}")

        try:
            if suffix == ".pdf":
                text = self._parse_pdf(file_path)
            else:
                text = file_path.read_text(encoding="utf-8")
                if suffix in (".md", ".markdown"):
                    _, text = self._parse_frontmatter(text)
        except UnicodeDecodeError as e:
            logger.error("document_encoding_error", path=str(file_path), error=str(e))
            raise ParseFailure(file_path, "file is not valid UTF-8") from e
        except OSError as e:
            raise ParseFailure(file_path, str(e)) from e
        except PyPdfError as e:
            raise ParseFailure(file_path, f"invalid PDF: {e}") from e

        logger.debug("document_parsed", path=str(file_path), content_length=len(text))
        return text

    def _parse_pdf(self, file_path: Path) -> str:
        reader = PdfReader(file_path)
        pages = [page.extract_text() or "" for page in reader.pages]
        return "\n\n".join(page.strip() for page in pages if page.strip())

    def _parse_frontmatter(self, content: str) -> Tuple[Dict[str, Any], str]:
        """Extract YAML frontmatter from markdown content.

        Args:
            content: Full markdown content

        Returns:
            Tuple of (frontmatter_dict, content_without_frontmatter)
        """
        match = self.FRONTMATTER_PATTERN.match(content)

        if not match:
            return {}, content

        yaml_content = match.group(1)
        try:
            frontmatter = yaml.safe_load(yaml_content)
            if not isinstance(frontmatter, dict):
                frontmatter = {}
        except yaml.YAMLError as e:
            logger.warning(
                "frontmatter_parse_error",
                error=str(e),
                yaml_preview=yaml_content[:100],
            )
            frontmatter = {}

        return frontmatter, content[match.end():]
