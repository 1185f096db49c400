import os
import streamlit as st
from lenny_listens.errors import PollTimeout
from lenny_listens.models import IntakeRecord
from lenny_listens.services.poller import ResultPoller
from lenny_listens.services.prompts import build_interview_prompt, build_perspective_description, company_name, use_case_label

# ---------- Config ----------
API_URL = os.getenv("LENNY_API_URL", "http://localhost:8000")
POLL_INTERVAL = float(os.getenv("LENNY_POLL_INTERVAL", "2"))
POLL_ATTEMPTS = int(os.getenv("LENNY_POLL_ATTEMPTS", "30"))

USE_CASES = ["feature_request", "new_product_discovery", "existing_feature_feedback"]

def render_record(record: dict):
    intake = record.get("intake") or {}
    st.subheader(f"Lenny Listens: {company_name(intake.get('company_domain'), 'Your Company')}")
    st.caption(use_case_label(intake.get("use_case", "")))
    if record.get("status") == "ready":
        st.success("Your research interview is ready.")
        st.link_button("Try the interview", record["preview_url"])
        st.text_input("Share link", record["share_url"])
        if record.get("perspective_id"):
            st.caption(f"Perspective ID: {record['perspective_id']}")
    else:
        st.error(f"Generation failed: {record.get('error_message') or 'unknown error'}")

st.set_page_config(page_title="Lenny Listens", page_icon="🎙️", layout="centered")

with st.sidebar:
    st.header("Service")
    API_URL = st.text_input("API base URL", API_URL)

st.title("Lenny Listens")
tabs = st.tabs(["Result", "Prompt preview"])

# ----- Result -----
with tabs[0]:
    params = st.query_params
    conversation_id = params.get("id") or st.text_input("Conversation ID", "")
    session_id = params.get("session")
    if st.button("Check status") or conversation_id or session_id:
        poller = ResultPoller(API_URL, interval=POLL_INTERVAL, max_attempts=POLL_ATTEMPTS)
        with st.spinner("Generating your research interview..."):
            try:
                record = poller.wait(conversation_id=conversation_id or None, session_id=session_id)
            except PollTimeout:
                record = None
        if record is None:
            st.warning("Still not finished. Refresh this page in a minute.")
        else:
            render_record(record)

# ----- Prompt preview -----
with tabs[1]:
    col1, col2 = st.columns(2)
    with col1:
        domain = st.text_input("Company domain", "acme.io")
        use_case = st.selectbox("Use case", USE_CASES, format_func=use_case_label)
    fields = {}
    with col2:
        if use_case == "feature_request":
            fields["problem_to_solve"] = st.text_input("Problem to solve", "")
            fields["current_workaround"] = st.text_input("Current workaround", "")
        elif use_case == "new_product_discovery":
            fields["market_or_audience"] = st.text_input("Market or audience", "")
            fields["hypothesis"] = st.text_input("Hypothesis", "")
        else:
            fields["feature_name"] = st.text_input("Feature name", "")
            fields["feedback_aspects"] = st.text_input("Feedback aspects", "")
    intake = IntakeRecord(conversation_id="preview", company_domain=domain, use_case=use_case,
                          **{k: v for k, v in fields.items() if v})
    st.text_area("Perspective description", build_perspective_description(intake), height=400)
    st.text_area("Signup prompt", build_interview_prompt(intake), height=150)
