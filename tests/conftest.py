import sys
from datetime import date, datetime, timedelta
from pathlib import Path

import pytest

# --- Put repo root on sys.path ---
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from crm_backend import CLIENT_TABLE, PROSPECT_TABLE, MockBackend


@pytest.fixture
def today():
    return date.today()


@pytest.fixture
def backend():
    """In-memory mock backend with a handful of prospects and clients."""
    mb  = MockBackend()
    now = datetime.now().replace(hour=10, minute=0, second=0, microsecond=0)

    for first, last, phone, result in [
        ("Anil",  "Kumar",  "(469) 555-0110", "Business"),
        ("Maria", "Lopez",  "(214) 555-0142", "In-Progress"),
        ("James", "Okafor", "(972) 555-0175", "Business"),
    ]:
        mb.insert(PROSPECT_TABLE, {"first_name": first, "last_name": last, "phone": phone, "result": result})

    mb.insert(CLIENT_TABLE, {
        "client_name": "Robert Thornton", "email": "r.t@email.com", "phone": "(630) 555-0192",
        "client_status": "New Client", "CalledOn": (now - timedelta(days=1)).isoformat(),
        "BOP_Date": now.isoformat(), "Followup_Date": None,
    })
    mb.insert(CLIENT_TABLE, {
        "client_name": "Linda Park", "email": "l.park@email.com", "phone": "(214) 555-0101",
        "client_status": "Completed", "CalledOn": None,
        "BOP_Date": (now + timedelta(days=5)).isoformat(),
        "Followup_Date": now.isoformat(),
    })
    mb.insert(CLIENT_TABLE, {
        "client_name": "Kevin Brooks", "email": "k.b@email.com", "phone": "(469) 555-0156",
        "client_status": "", "CalledOn": (now - timedelta(days=3)).isoformat(),
        "BOP_Date": (now + timedelta(days=60)).isoformat(), "Followup_Date": None,
    })
    return mb
