# src/marksheet_digitizer/tools/sheet_images.py
from __future__ import annotations

from pathlib import Path
from typing import List, Tuple

import cv2 as cv
import fitz  # PyMuPDF
import numpy as np

IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".bmp", ".tif", ".tiff", ".webp"}
JPEG_QUALITY = 90


class ImageInputError(ValueError):
    """A selected file is not a readable image or PDF scan."""


# ---------- I/O ----------
def _pdf_pages(doc: "fitz.Document", dpi: int) -> List[np.ndarray]:
    zoom = dpi / 72.0
    mat = fitz.Matrix(zoom, zoom)
    pages: List[np.ndarray] = []
    for page in doc:
        pix = page.get_pixmap(matrix=mat, alpha=False)
        img = np.frombuffer(pix.samples, dtype=np.uint8).reshape(pix.height, pix.width, 3)
        pages.append(cv.cvtColor(img, cv.COLOR_RGB2BGR))
    return pages


def load_sheet_pages(path: str | Path, dpi: int = 200) -> List[np.ndarray]:
    """
    Load a mark-sheet scan as BGR images: every page of a PDF, or the single
    raster image. Raises ImageInputError for anything that does not decode.
    """
    p = Path(path)
    if not p.is_file():
        raise ImageInputError(f"File not found: {p}")

    if p.suffix.lower() == ".pdf":
        try:
            with fitz.open(str(p)) as doc:
                pages = _pdf_pages(doc, dpi)
        except (RuntimeError, ValueError) as e:
            raise ImageInputError(f"Could not read PDF {p.name}: {e}") from e
        if not pages:
            raise ImageInputError(f"No pages in PDF: {p.name}")
        return pages

    img = cv.imread(str(p), cv.IMREAD_COLOR)
    if img is None:
        raise ImageInputError(f"Not an image file: {p.name}")
    return [img]


def decode_upload(data: bytes, name: str, dpi: int = 200) -> List[np.ndarray]:
    """Same as load_sheet_pages for in-memory uploads."""
    if name.lower().endswith(".pdf"):
        try:
            with fitz.open(stream=data, filetype="pdf") as doc:
                pages = _pdf_pages(doc, dpi)
        except (RuntimeError, ValueError) as e:
            raise ImageInputError(f"Could not read PDF {name}: {e}") from e
        if not pages:
            raise ImageInputError(f"No pages in PDF: {name}")
        return pages

    arr = np.frombuffer(data, dtype=np.uint8)
    img = cv.imdecode(arr, cv.IMREAD_COLOR) if arr.size else None
    if img is None:
        raise ImageInputError(f"Not an image file: {name}")
    return [img]


# ---------- OCR payload ----------
def fit_within(img_bgr: np.ndarray, max_side: int) -> np.ndarray:
    h, w = img_bgr.shape[:2]
    longest = max(h, w)
    if max_side <= 0 or longest <= max_side:
        return img_bgr
    scale = max_side / float(longest)
    size = (max(1, int(round(w * scale))), max(1, int(round(h * scale))))
    return cv.resize(img_bgr, size, interpolation=cv.INTER_AREA)


def encode_for_ocr(img_bgr: np.ndarray, max_side: int = 2000) -> bytes:
    """Downscale (longest side <= max_side) and JPEG-encode one page."""
    ok, buf = cv.imencode(".jpg", fit_within(img_bgr, max_side), [cv.IMWRITE_JPEG_QUALITY, JPEG_QUALITY])
    if not ok:
        raise ImageInputError("Failed to JPEG-encode page")
    return buf.tobytes()


def page_names(path: str | Path, count: int) -> List[str]:
    name = Path(path).name
    if count == 1:
        return [name]
    return [f"{name} [page {i}]" for i in range(1, count + 1)]


def load_ocr_payloads(path: str | Path, dpi: int = 200, max_side: int = 2000) -> List[Tuple[str, bytes]]:
    """(display name, JPEG bytes) per page of `path`."""
    pages = load_sheet_pages(path, dpi=dpi)
    return list(zip(page_names(path, len(pages)), (encode_for_ocr(pg, max_side) for pg in pages)))
