from dotenv import load_dotenv

load_dotenv(".env.local"); load_dotenv()  # also loads .env if present

# app.py
import base64
import json
import os

import altair as alt
import pandas as pd
import requests
import streamlit as st

st.set_page_config(page_title="Character Sheet Export", layout="wide")

BACKEND = os.getenv("BACKEND_URL", "http://127.0.0.1:8000")

SAMPLE_CHARACTER = {
    "name": "Tordek",
    "playerName": "Sam",
    "race": {"name": "Dwarf", "subrace": "Hill"},
    "background": {"name": "Soldier"},
    "abilityScores": {
        "strength": 16,
        "dexterity": 12,
        "constitution": 14,
        "intelligence": 10,
        "wisdom": 13,
        "charisma": 8,
    },
    "abilityBonuses": {
        "constitution": [{"value": 2, "source": "race"}],
        "wisdom": [{"value": 1, "source": "subrace"}],
    },
    "progression": {"classes": [{"name": "Fighter", "levels": 5, "hitDice": 10, "subclass": "Champion"}]},
    "proficiencies": {
        "armor": ["Light Armor", "Medium Armor", "Heavy Armor", "Shields"],
        "weapons": ["Simple Weapons", "Martial Weapons"],
        "skills": ["Athletics", "Intimidation"],
        "savingThrows": ["Strength", "Constitution"],
        "languages": ["Common", "Dwarvish"],
    },
    "speed": {"walk": 25},
    "hitPoints": {"current": 44, "max": 44, "temp": 0},
    "inventory": {"items": [{"name": "Greataxe", "quantity": 1}, {"name": "Handaxe", "quantity": 2}]},
}


def _get(path: str, **kwargs):
    r = requests.get(f"{BACKEND}{path}", timeout=30, **kwargs)
    if not r.ok:
        st.error(f"{path} failed: {r.text}")
        return None
    return r.json()


def _post(path: str, payload: dict):
    r = requests.post(f"{BACKEND}{path}", json=payload, timeout=120)
    if not r.ok:
        try:
            detail = r.json().get("detail", r.text)
        except ValueError:
            detail = r.text
        st.error(detail)
        return None
    return r.json()


# ------------- Sidebar: template + portrait -------------
st.sidebar.title("Template")

templates = (_get("/sheets/templates") or {}).get("templates", [])
if not templates:
    st.sidebar.warning("No templates found. Put fillable PDFs into SHEET_TEMPLATES_DIR.")
names = [t["name"] for t in templates]
template_name = st.sidebar.selectbox(
    "Sheet template",
    options=names,
    format_func=lambda n: f"{n} ({next(t['schema'] for t in templates if t['name'] == n)})",
) if names else None

portrait_file = st.sidebar.file_uploader("Portrait (PNG/JPEG)", type=["png", "jpg", "jpeg"])

if template_name and st.sidebar.button("Inspect template fields"):
    scan = _get(f"/sheets/templates/{template_name}/fields")
    if scan:
        st.session_state["scan"] = scan["scan"]


# ------------- Main -------------
st.title("Character Sheet Export")

character_text = st.text_area(
    "Character record (JSON)",
    value=st.session_state.get("character_text", json.dumps(SAMPLE_CHARACTER, indent=2)),
    height=320,
)
try:
    character = json.loads(character_text)
    st.session_state["character_text"] = character_text
except json.JSONDecodeError as exc:
    st.error(f"Invalid JSON: {exc}")
    character = None

if character is not None:
    values = _post("/sheets/values", character)
    if values:
        st.subheader("Derived values")
        col1, col2, col3, col4 = st.columns(4)
        col1.metric("Level", values["total_level"])
        col2.metric("Proficiency", f"+{values['proficiency_bonus']}")
        col3.metric("Max HP", values["max_hp"])
        col4.metric("Passive Perception", values["passive_perception"])

        df = pd.DataFrame(
            [{"ability": k.title(), **v} for k, v in values["abilities"].items()]
        )
        chart = alt.Chart(df, height=240).mark_bar().encode(
            x=alt.X("ability", sort=None, title=None),
            y=alt.Y("score", title="Score"),
            tooltip=["ability", "score", "modifier"],
        )
        st.altair_chart(chart, use_container_width=True)

        skills = pd.DataFrame(
            [{"skill": k, **v} for k, v in values["skills"].items()]
        )
        st.dataframe(skills, use_container_width=True, hide_index=True)

if character is not None and template_name:
    payload = {"character": character, "template_name": template_name}
    if portrait_file is not None:
        payload["portrait_base64"] = base64.b64encode(portrait_file.getvalue()).decode("ascii")
        payload["portrait_filename"] = portrait_file.name

    col_preview, col_save = st.columns(2)
    if col_preview.button("Preview sheet", type="primary"):
        result = _post("/sheets/preview", payload)
        if result:
            st.session_state["preview"] = result

    output_path = col_save.text_input(
        "Save as (file name in the server export folder)",
        value=f"{character.get('name') or 'character'}.pdf",
    )
    overwrite = col_save.checkbox("Replace an existing file")
    if col_save.button("Save to disk"):
        result = _post("/sheets/export", {**payload, "output_path": output_path, "overwrite": overwrite})
        if result:
            col_save.success(f"Saved {result['metadata']['file_path']}")

preview = st.session_state.get("preview")
if preview:
    meta = preview["metadata"]
    pdf_bytes = base64.b64decode(preview["pdf_base64"])
    st.caption(f"{meta['filename']} · {meta['schema']} schema · {meta['size']:,} bytes")
    st.download_button("Download PDF", data=pdf_bytes, file_name=meta["filename"], mime="application/pdf")
    st.markdown(
        f'<iframe src="data:application/pdf;base64,{preview["pdf_base64"]}" width="100%" height="900"></iframe>',
        unsafe_allow_html=True,
    )

scan = st.session_state.get("scan")
if scan:
    st.subheader(f"Fields of {scan['template_file']}")
    coverage = scan.get("coverage", {})
    st.caption(
        f"{scan['field_count']} fields · {coverage.get('schema')} schema coverage "
        f"{coverage.get('coverage', 0):.0%} ({len(coverage.get('missing', []))} missing)"
    )
    st.dataframe(pd.DataFrame(scan["fields"]), use_container_width=True, hide_index=True)
    if coverage.get("missing"):
        with st.expander("Missing schema fields"):
            st.write(coverage["missing"])
