import re
from typing import List

_WS = re.compile(r"\s+")

def normalize_whitespace(text: str) -> str:
    return _WS.sub(" ", text or "").strip()

def chunk_text(text: str, chunk_size: int = 1000, overlap: int = 200) -> List[str]:
    """
    Parte el texto en ventanas de hasta ``chunk_size`` caracteres que se solapan
    ``overlap`` caracteres con la anterior.

    - Normaliza espacios antes de partir; texto vacío -> [].
    - Si la ventana no es la última, corta después del último '.' o salto de
      línea siempre que quede más allá de la mitad de ``chunk_size``.
    - El cursor avanza ``len(ventana) - overlap`` (mínimo 1), así ningún
      carácter queda sin cubrir.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError("overlap must be >= 0 and smaller than chunk_size")

    cleaned = normalize_whitespace(text)
    if not cleaned:
        return []

    chunks: List[str] = []
    total = len(cleaned)
    start = 0
    while start < total:
        end = min(start + chunk_size, total)
        window = cleaned[start:end]

        if end < total:
            # después de normalizar no quedan '\n', pero se respeta igual
            brk = max(window.rfind("."), window.rfind("\n"))
            if brk > chunk_size * 0.5:
                window = window[: brk + 1]

        piece = window.strip()
        if piece:
            chunks.append(piece)

        if start + len(window) >= total:
            break
        start += max(len(window) - overlap, 1)

    return chunks
