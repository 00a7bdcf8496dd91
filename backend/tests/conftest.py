import os
import sys
import tempfile

# Point the module-level stores at a throwaway directory before the app is imported.
_DATA_DIR = tempfile.mkdtemp(prefix="homeserve-tests-")
os.environ.setdefault("HOMESERVE_DB_PATH", os.path.join(_DATA_DIR, "homeserve.sqlite3"))
os.environ.setdefault("UPLOADS_DIR", os.path.join(_DATA_DIR, "uploads"))
os.environ.setdefault("FIREBASE_CREDENTIALS_PATH", "")

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))
