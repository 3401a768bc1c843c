"""
Idempotent gallery index initialization.

Run as:
  python -m db.migrations     (preferred, from repo root)
or:
  python db/migrations.py     (also works)
"""
from pathlib import Path
import sys

# Ensure project root is on sys.path when run directly
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from geocam import config  # noqa: E402
from geocam.gallery import DirectoryGallery  # noqa: E402

if __name__ == "__main__":
    gallery = DirectoryGallery.from_config(config.load_config())
    gallery.init_db()
    print(f"Gallery index ready at {gallery.db_path}")
