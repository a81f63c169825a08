import pandas as pd
import streamlit as st
from contextlib import contextmanager
from dataclasses import asdict
from typing import Optional

from bi_core.errors import ExportBlocked, ValidationError
from bi_core.export import check_report_completeness, statistics_table, verify_certification
from bi_core.session import Session


# ---------- UI / layout helpers ----------
def inject_base_styles():
    if st.session_state.get("_base_css_injected"):
        return
    st.markdown(
        """
        <style>
        .card {border: 1px solid #e5e7eb;border-radius: 12px;padding: 16px;background: #ffffff;
               box-shadow: 0 1px 2px rgba(0,0,0,0.04); margin-bottom: 12px;}
        .card-header {display: flex;justify-content: space-between;align-items: center;margin-bottom: 8px;}
        .card-title {font-weight: 600;font-size: 1.0rem;color: #111827;}
        .card-actions {font-size: 0.9rem;color: #2563eb;}
        </style>
        """,
        unsafe_allow_html=True,
    )
    st.session_state["_base_css_injected"] = True


@contextmanager
def card(title: str, actions: Optional[str] = None):
    container = st.container()
    container.markdown(
        f"""
        <div class="card">
          <div class="card-header">
            <div class="card-title">{title}</div>
            <div class="card-actions">{actions or ""}</div>
          </div>
        """,
        unsafe_allow_html=True,
    )
    body = container.container()
    with body:
        yield body
    container.markdown("</div>", unsafe_allow_html=True)


def get_session() -> Session:
    if "bi_session" not in st.session_state:
        s = Session()
        s.hydrate()
        st.session_state["bi_session"] = s
    return st.session_state["bi_session"]


def run_audit(s: Session, x: str, y: str, mode: str, *, auto: bool = False):
    try:
        with st.spinner("ANALYSIS RUNNING..."):
            return s.audit(x, y, mode)
    except ValidationError as exc:
        if not auto:
            st.warning(exc.message)
    except Exception as exc:
        s.activity.log(f"Audit exception: {exc}")
        st.error(f"Audit failed: {exc}")
    return None


# ---------- UI setup ----------
st.set_page_config(page_title="BI Audit Dashboard", layout="wide")
inject_base_styles()
st.title("BI Audit Dashboard")
st.caption("Upload CSV/XLSX sources, map coordinates and run a statistical audit.")

session = get_session()

with st.sidebar:
    st.markdown("### Sources")
    uploads = st.file_uploader("CSV / XLSX files", type=["csv", "tsv", "txt", "xlsx", "xls"], accept_multiple_files=True)
    if uploads and st.button("Ingest files"):
        with st.spinner("ANALYSIS RUNNING..."):
            report = session.ingest([(u.name, u.getvalue()) for u in uploads])
        for failure in report.failed:
            st.error(f"Governance alert: {failure['error']}")
        for name in report.rejected:
            st.warning(f"{name} rejected: needs a numeric and a categorical/temporal column.")

    datasets = session.store.get_all()
    for ds_id, ds in datasets.items():
        c1, c2 = st.columns([4, 1])
        c1.markdown(f"**{ds.name}** · {ds.meta.row_count:,} rows")
        if c2.button("✕", key=f"rm_{ds_id}"):
            session.remove_dataset(ds_id)
            st.rerun()

    st.markdown("---")
    st.markdown("### Coordinate mapping")
    mode = st.selectbox("Combination mode", ["single", "union", "compare"], index=0)
    state = session.store.reconcile(mode)
    candidates = session.store.coordinate_candidates()
    headers = state.all_headers
    x_default = headers.index(candidates["x"]) + 1 if candidates["x"] in headers else 0
    y_default = headers.index(candidates["y"]) + 1 if candidates["y"] in headers else 0
    x = st.selectbox("X (category / time)", [""] + headers, index=x_default)
    y = st.selectbox("Y (target metric)", [""] + headers, index=y_default)
    if headers:
        st.caption(f"{state.total_rows:,} rows · ~{state.estimated_memory_mb} MB")
    trigger = st.button("Run audit", type="primary")

result = None
if trigger:
    result = run_audit(session, x, y, mode)
elif datasets and x and y and session.last_result is None:
    result = run_audit(session, x, y, mode, auto=True)
result = result or session.last_result

if result is None or result.main_statistics is None:
    st.info("Load a dataset and select a coordinate mapping to run an audit.")
    st.stop()

stats = result.main_statistics
k1, k2, k3, k4 = st.columns(4)
k1.metric("Total " + result.label_y, f"{stats.sum:,.0f}", f"{result.deltas.volume_shift_pct}%")
k2.metric("Peak", f"{stats.max:,.0f}", f"{result.deltas.peak_shift_pct}%")
k3.metric("Mean", f"{stats.mean:,.2f}")
k4.metric("Correlation", f"{result.correlation:.2f}")

left, right = st.columns([3, 2])
with left:
    with card("Distribution", result.interpretation.operational_state):
        for spec in session.charts.values():
            st.vega_lite_chart(spec=spec, use_container_width=True)
with right:
    with card("Narrative"):
        for section in result.narrative_sections:
            st.markdown(f"**{section.title}**")
            st.write(section.content)
    with card("Impact matrix"):
        st.dataframe(pd.DataFrame([asdict(e) for e in result.impact_matrix]), hide_index=True)
    with card("Advisory"):
        st.dataframe(pd.DataFrame([asdict(e) for e in result.advisory]), hide_index=True)

with card("Statistics model", result.track_id):
    st.dataframe(statistics_table(result), hide_index=True)

completeness = check_report_completeness(result, session.renderer.get_chart_snapshot())
cert = verify_certification(result)
c1, c2 = st.columns([3, 1])
c1.caption(f"Certification: {cert['status']} · Fingerprint {result.content_hash}")
if completeness.complete:
    try:
        c2.download_button("Export report", data=session.export(), file_name=f"{result.track_id}.html", mime="text/html")
    except ExportBlocked:
        c2.warning("REPORT STATUS: INCOMPLETE, EXPORT BLOCKED.")
else:
    c2.warning("REPORT STATUS: INCOMPLETE, EXPORT BLOCKED.")

with st.expander("Audit history", expanded=False):
    hist = session.orchestrator.history()
    st.dataframe(
        pd.DataFrame(
            [
                {
                    "timestamp": r.timestamp,
                    "track_id": r.track_id,
                    "x": r.chosen_x,
                    "y": r.chosen_y,
                    "total": r.main_statistics.sum if r.main_statistics else None,
                    "fingerprint": r.content_hash,
                }
                for r in hist
            ]
        ),
        hide_index=True,
    )
    if st.button("Clear history"):
        session.orchestrator.clear_history()
        st.rerun()

with st.expander("Activity log", expanded=False):
    st.dataframe(pd.DataFrame(session.activity.to_records()), hide_index=True)
