from pathlib import PurePath
from bs4 import BeautifulSoup
import pymupdf
from chatkb.core.errors import ContentError
from chatkb.core.logging import get_logger

logger = get_logger(__name__)

# elementos que no aportan texto útil (menús, pies, scripts)
STRIP_TAGS = ["script", "style", "nav", "footer", "header", "noscript"]

def html_to_text(html: str) -> tuple[str, str]:
    """Devuelve (titulo, texto) de un documento HTML."""
    soup = BeautifulSoup(html or "", "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else ""
    for tag in soup(STRIP_TAGS):
        tag.decompose()
    root = soup.body or soup
    text = " ".join(root.get_text(separator=" ").split())
    return title, text

def pdf_to_text(data: bytes) -> str:
    try:
        with pymupdf.open(stream=data, filetype="pdf") as doc:
            return "\n".join(page.get_text() for page in doc)
    except (RuntimeError, ValueError) as e:
        raise ContentError(f"Unreadable PDF: {e}") from e

def extract_file_text(filename: str, data: bytes) -> str:
    """Texto crudo de un archivo subido según su extensión."""
    ext = PurePath(filename or "").suffix.lower()
    if ext == ".pdf":
        text = pdf_to_text(data)
    elif ext in (".html", ".htm"):
        _, text = html_to_text(data.decode("utf-8", errors="replace"))
    else:
        # .txt, .md y el resto: se intenta leer como texto
        text = data.decode("utf-8", errors="replace")
    logger.debug("file_text_extracted", filename=filename, ext=ext, chars=len(text))
    return text
