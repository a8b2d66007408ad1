# main.py
"""
Entry point: uvicorn main:app
"""
import logging, sys
from askdocs.api import app  # noqa

root = logging.getLogger()
if not root.handlers:
    h = logging.StreamHandler(sys.stdout)
    h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    root.addHandler(h)
    root.setLevel(logging.INFO)
