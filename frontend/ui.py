"""
Streamlit frontend for the University Explorer.

Pure presentation: every user action is posted to the FastAPI backend and
the returned state snapshot is rendered as-is.  Nothing here mutates the
application state locally.

### Quick start
1. Start the backend in another terminal: `python app/app.py`
2. Start the UI: `streamlit run frontend/ui.py`
"""

import sys
from pathlib import Path
from typing import Any

import requests
import streamlit as st

# Ensure project root is on sys.path when launched via `streamlit run frontend/ui.py`
sys.path.insert(0, str(Path(__file__).parent.parent))

from catalog.config import QUICK_SEARCHES, Settings

SETTINGS = Settings.from_env()
API_URL = SETTINGS.api_url
# One backend call can wrap a content request, its fallback and a store round trip.
API_TIMEOUT = SETTINGS.request_timeout * 3
MODES = {"AI Explorer": "explorer", "My Repository": "repository"}
LOADING_TEXT = {
    "explorer": "Consulting the Oracle...",
    "repository": "Accessing Secure Backend...",
}

Snapshot = dict[str, Any]

st.set_page_config(page_title="University Explorer", layout="wide")


# ---------------------------------------------------------------------------
# Backend calls
# ---------------------------------------------------------------------------

def _call(method: str, path: str, payload: dict | None = None) -> Snapshot:
    try:
        resp = requests.request(method, f"{API_URL}{path}", json=payload, timeout=API_TIMEOUT)
        resp.raise_for_status()
        return resp.json()
    except requests.exceptions.ConnectionError:
        st.error("Cannot reach the API. Start it with: python app/app.py")
        st.stop()
    except requests.exceptions.HTTPError as exc:
        st.error(f"API error: {exc}")
        st.stop()


def _act(path: str, payload: dict | None = None, spinner: str | None = None) -> None:
    """POST an intent, keep the returned snapshot, re-render."""
    with st.spinner(spinner or "Loading…"):
        st.session_state.snapshot = _call("POST", path, payload)
    st.rerun()


def _snapshot() -> Snapshot:
    if "snapshot" not in st.session_state:
        current = _call("GET", "/state")
        with st.spinner(LOADING_TEXT[current["mode"]]):
            st.session_state.snapshot = _call("POST", "/mode", {"mode": current["mode"]})
    return st.session_state.snapshot


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

def _render_header(state: Snapshot) -> None:
    st.title("University Explorer")
    labels = list(MODES)
    current = next(label for label, mode in MODES.items() if mode == state["mode"])
    choice = st.radio("View", labels, index=labels.index(current), horizontal=True,
                      label_visibility="collapsed")
    if MODES[choice] != state["mode"]:
        _act("/mode", {"mode": MODES[choice]}, LOADING_TEXT[MODES[choice]])


def _render_search(state: Snapshot) -> None:
    st.subheader("Find Your Future University")
    with st.form("search"):
        query = st.text_input("Search", placeholder="Search by name, city, or discipline...",
                              label_visibility="collapsed")
        submitted = st.form_submit_button("Search", disabled=state["loading"])
    if submitted and query.strip():
        _act("/search", {"q": query}, LOADING_TEXT["explorer"])

    cols = st.columns(len(QUICK_SEARCHES))
    for col, tag in zip(cols, QUICK_SEARCHES):
        if col.button(tag, key=f"tag-{tag}"):
            _act("/search", {"q": tag}, LOADING_TEXT["explorer"])


def _render_list(state: Snapshot) -> None:
    explorer = state["mode"] == "explorer"
    if explorer:
        _render_search(state)

    if state["error"]:
        st.error(f"**Backend Notice**  \n{state['error']}")

    left, right = st.columns([3, 1])
    left.subheader("Explorer Feed" if explorer else "Saved in Repository")
    right.caption(f"{len(state['universities'])} institutions tracked")

    universities = state["universities"]
    if not universities and not state["loading"]:
        st.info(
            "**No universities found.** Try adjusting your search terms."
            if explorer else
            "**Repository is empty.** Go to the explorer to start adding institutions."
        )
        return

    cols = st.columns(3)
    for idx, uni in enumerate(universities):
        with cols[idx % 3].container(border=True):
            st.caption(f"{uni['type']} · {uni['location']}, {uni['country']}")
            st.markdown(f"**{uni['name']}**")
            if uni.get("description"):
                st.write(uni["description"])
            st.caption(uni.get("classification") or "")
            if st.button("View details", key=f"uni-{uni['id']}-{idx}"):
                _act("/universities/select", {"name": uni["name"]}, "Loading details…")


def _render_university(state: Snapshot) -> None:
    uni = state["selectedUniversity"]

    top_left, top_right = st.columns([4, 1])
    if top_left.button("← Back"):
        _act("/back")
    label = "Updating..." if state["isSaving"] else ("In Repository" if state["isSaved"] else "Save to Repository")
    if top_right.button(label, disabled=state["isSaving"]):
        _act("/university/save", spinner="Updating repository…")

    if state["error"]:
        st.error(state["error"])

    main, side = st.columns([2, 1])
    with main:
        st.header(uni["name"])
        meta = f"**{uni['type']}** · {uni['location']}, {uni['country']}"
        if uni.get("worldRanking"):
            meta += f" · World Rank: #{uni['worldRanking']}"
        st.markdown(meta)
        if uni.get("website"):
            st.link_button("Visit Website", uni["website"])

        st.subheader("About the University")
        st.write(uni.get("description") or "")

        tags = [c.strip() for c in (uni.get("classification") or "").split(",") if c.strip()]
        if tags:
            st.caption("CLASSIFICATIONS")
            st.markdown(" ".join(f"`{t}`" for t in tags))

        st.subheader("Academic Programs")
        cols = st.columns(2)
        for idx, program in enumerate(uni.get("programs") or []):
            with cols[idx % 2].container(border=True):
                st.markdown(f"**{program['name']}** · _{program['degree']}_")
                st.caption(f"Faculty: {program['faculty']}  \nDuration: {program['duration']}  \n"
                           f"Est. Tuition: {program['tuitionEstimate']}")
                if st.button("Learn more →", key=f"prog-{idx}"):
                    _act("/programs/select", {"name": program["name"]}, "Analyzing program…")

    with side:
        st.subheader("Location & Access")
        location = state.get("location")
        if state["loadingMap"] or location is None:
            st.caption("Loading map data...")
        elif location.get("mapUrl"):
            st.write(location["text"])
            st.link_button("Open in Google Maps", location["mapUrl"])
        else:
            st.caption(location.get("text") or "Map information unavailable.")

        st.caption("VERIFIED SOURCES")
        for source in uni.get("sources") or []:
            st.markdown(f"- [{source['title']}]({source['uri']})")

    if location is None:
        # Detail extras load after the first paint; each call returns a fresh snapshot.
        st.session_state.snapshot = _call("POST", "/university/saved-status")
        st.session_state.snapshot = _call("POST", "/university/location")
        st.rerun()


def _render_program(state: Snapshot) -> None:
    uni = state["selectedUniversity"]
    program = state["selectedProgram"]

    if st.button(f"← {uni['name']}"):
        _act("/back")
    st.caption(f"University Details / {program['name']}")

    st.header(program["name"])
    st.markdown(f"**{program['degree']}** · {program['faculty']} · {program['duration']} · "
                f"Est. Tuition: {program['tuitionEstimate']}")

    st.subheader("Overview")
    st.write(program.get("overview") or "")

    col1, col2, col3 = st.columns(3)
    for col, title, items in (
        (col1, "Core Curriculum", program.get("curriculum")),
        (col2, "Career Prospects", program.get("careerProspects")),
        (col3, "Admission Requirements", program.get("admissionRequirements")),
    ):
        with col:
            st.subheader(title)
            for item in items or []:
                st.markdown(f"- {item}")


# ---------------------------------------------------------------------------
# Page
# ---------------------------------------------------------------------------

state = _snapshot()
_render_header(state)

if state["view"] == "program":
    _render_program(state)
elif state["view"] == "university":
    _render_university(state)
else:
    _render_list(state)

st.divider()
st.caption("University Explorer · powered by OpenAI & Supabase")
