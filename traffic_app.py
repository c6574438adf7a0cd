"""Streamlit front-end for the traffic analysis and call simulator.

Run with ``streamlit run traffic_app.py``.  The page keeps a
:class:`SnapshotStore` in the session, renders the dimensioning tables,
compares two analyses, replays the call simulation on a virtual clock and asks
the explanation proxy for a write-up.
"""

import re

import numpy as np
import pandas as pd
import requests

from call_simulation import SimulationManager
from core.config import EngineConfig
from core.validators import (
    CODECS,
    InputValidationError,
    MAX_BLOCKING_PROBABILITY,
    MIN_BLOCKING_PROBABILITY,
    SnapshotLimitError,
    UpstreamError,
)
from event_scheduler import VirtualScheduler
from snapshot_store import (
    SnapshotStore,
    compare_snapshots,
    describe_snapshot,
    snapshots_identical,
)
from traffic_model import links_frame

# Closing offers the model tends to append despite being told not to.
TRAILING_QUESTIONS = re.compile(
    r"\n\n(?:Do you want me to|Would you like me to|Should I|Let me know if)[\s\S]*$"
)


def _results_table(snapshot):
    if snapshot.network_type == "pstn":
        lines = [
            "PSTN Analysis Results:",
            "| From | To | Daily Minutes | Busy Hour Erlangs | Required Circuits "
            "| T-1 Count | Bandwidth (Mbps) |",
        ]
        for link in snapshot.links:
            lines.append(
                f"| {link.from_location} | {link.to_location} | {link.daily_minutes:,.0f} "
                f"| {link.busy_hour_erlangs:.2f} | {link.required_circuits} "
                f"| {link.t1_count} | {link.bandwidth_mbps:.2f} |"
            )
        return lines
    lines = [
        "VoIP Analysis Results:",
        f"Codec: {snapshot.codec.upper()}",
        "| From | To | Daily Minutes | Busy Hour Erlangs | Bandwidth per Call (kbps) "
        "| Total Bandwidth (Mbps) |",
    ]
    for link in snapshot.links:
        lines.append(
            f"| {link.from_location} | {link.to_location} | {link.daily_minutes:,.0f} "
            f"| {link.busy_hour_erlangs:.2f} | {link.total_bandwidth_per_call_kbps:.0f} "
            f"| {link.total_bandwidth_mbps:.2f} |"
        )
    return lines


def build_explanation_prompt(snapshot):
    """Format ``snapshot`` as a prompt for the explanation model."""
    lines = [
        "Explain the following network traffic analysis results in simple terms:",
        "",
        f"Network Type: {snapshot.network_type.upper()}",
        f"Blocking Probability: {snapshot.blocking_probability}",
        "",
    ]
    lines += _results_table(snapshot)
    lines += [
        "",
        "Please provide a comprehensive explanation with the following structure:",
        "",
        "## Overview",
        "- Brief description of the analysis type and methodology",
        "- Key parameters and their significance",
        "",
        "## Results Analysis",
        "- Detailed interpretation of the traffic data",
        "- What the numbers mean in practical terms",
        "- Performance implications for each link",
        "",
        "## Technical Insights",
        "- Bandwidth utilization patterns",
        "- Infrastructure requirements",
        "- Scalability considerations",
        "",
        "## Recommendations",
        "- Implementation considerations",
        "- Potential optimizations",
        "- Risk factors to monitor",
        "",
        "IMPORTANT:",
        "- Use clear, professional language",
        "- Include specific insights about the data",
        "- Use markdown formatting for better readability",
        "- Focus on practical implications for network engineers",
        "- Do not ask questions or offer additional assistance at the end",
    ]
    return "\n".join(lines) + "\n"


def build_comparison_prompt(first, second):
    """Format two snapshots, and any explanations they carry, as one prompt."""
    labels = [describe_snapshot(first).upper(), describe_snapshot(second).upper()]
    lines = ["Please provide a comparison summary of the following two network traffic analyses:"]
    for label, snapshot in zip(labels, (first, second)):
        lines += [
            "",
            f"{label}:",
            f"Network Type: {snapshot.network_type.upper()}",
            f"Timestamp: {snapshot.timestamp}",
            f"Blocking Probability: {snapshot.blocking_probability}",
        ]
        lines += _results_table(snapshot)
    for label, snapshot in zip(labels, (first, second)):
        if snapshot.explanation:
            lines += ["", f"{label} EXPLANATION ({snapshot.model_used}):", snapshot.explanation]
    lines += [
        "",
        "Please provide a comprehensive, structured comparison summary with the following sections:",
        "",
        "## 1. Executive Summary",
        "- Brief overview of the two analyses being compared",
        "- Key findings at a glance",
        "",
        "## 2. Technical Comparison",
        "- Detailed comparison of network metrics",
        "- Use tables to clearly show differences",
        "- Highlight significant variations",
        "",
        "## 3. Performance Analysis",
        "- Bandwidth efficiency comparison",
        "- Infrastructure requirements",
        "- Scalability implications",
        "",
        "## 4. Cost and Resource Implications",
        "- Infrastructure costs",
        "- Maintenance requirements",
        "- Resource utilization",
        "",
        "## 5. Recommendations",
        "- Which approach might be better for different scenarios",
        "- Implementation considerations",
        "- Risk factors to consider",
        "",
        "## 6. Conclusion",
        "- Summary of key insights",
        "- Final recommendations",
        "",
        "IMPORTANT GUIDELINES:",
        "- Use clear, professional language",
        "- Include specific numbers and percentages where relevant",
        "- Use markdown tables for metric comparisons",
        "- Provide actionable insights",
        "- Do not ask questions or offer additional assistance at the end",
        "- Focus on practical implications for network engineers and decision makers",
    ]
    return "\n".join(lines) + "\n"


def strip_trailing_questions(text):
    """Drop a closing offer such as "Would you like me to..." from ``text``."""
    return TRAILING_QUESTIONS.sub("", text)


def extract_explanation(data):
    """Return the generated text from a generateContent response."""
    try:
        return data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        raise UpstreamError("Invalid response structure from Gemini API") from None


def _ask_proxy(prompt, api_key, model, config, session):
    config = config or EngineConfig()
    http = session or requests
    response = http.post(
        config.proxy_url,
        json={"apiKey": api_key, "model": model, "prompt": prompt},
        timeout=config.upstream_timeout_s,
    )
    if not response.ok:
        raise UpstreamError(
            f"API request failed with status {response.status_code}: {response.text}",
            status=response.status_code,
        )
    return extract_explanation(response.json())


def request_explanation(snapshot, api_key, model, config=None, session=None):
    """Ask the proxy to explain ``snapshot`` and return the text."""
    return _ask_proxy(build_explanation_prompt(snapshot), api_key, model, config, session)


def request_comparison_summary(first, second, api_key, model, config=None, session=None):
    """Ask the proxy to compare two snapshots and return the cleaned summary."""
    text = _ask_proxy(build_comparison_prompt(first, second), api_key, model, config, session)
    return strip_trailing_questions(text)


def simulation_log(manager, snapshot_id):
    """Run a full simulation window and return metrics plus an event table."""
    events = []

    def collect(event):
        if event.snapshot_id == snapshot_id:
            events.append(event)

    unsubscribe = manager.subscribe(collect)
    try:
        metrics = manager.run_to_completion(snapshot_id)
    finally:
        unsubscribe()
    log = pd.DataFrame(
        [
            {
                "Time (s)": round(e.time_ms / 1000, 2),
                "Event": e.kind,
                "Link": e.link_name,
                "Call": e.call_id,
                "Active": e.active_calls,
                "Max": e.max_concurrent_calls,
            }
            for e in events
        ]
    )
    return metrics, log


def run_app():
    """Launch Streamlit UI with analysis, comparison and simulation."""
    import streamlit as st

    config = EngineConfig.from_env()
    if "store" not in st.session_state:
        st.session_state.store = SnapshotStore(config)
        st.session_state.manager = SimulationManager(
            st.session_state.store, VirtualScheduler(), config
        )
    store = st.session_state.store
    manager = st.session_state.manager

    st.title("VoIP / PSTN Traffic Analysis")
    st.sidebar.header("Inputs")
    network_type = st.sidebar.radio("Network Type", ["pstn", "voip"], format_func=str.upper)
    codec = st.sidebar.selectbox("Codec", CODECS, format_func=str.upper)
    blocking = st.sidebar.number_input(
        "Blocking Probability",
        min_value=MIN_BLOCKING_PROBABILITY,
        max_value=MAX_BLOCKING_PROBABILITY,
        value=0.01,
        step=0.001,
        format="%.3f",
    )
    randomized = st.sidebar.checkbox("Randomized traffic split")
    seed = st.sidebar.number_input("Seed", value=42, step=1)

    if st.sidebar.button("Run Analysis"):
        try:
            store.create(
                network_type,
                codec,
                blocking,
                split_mode="random" if randomized else "equal",
                rng=np.random.default_rng(int(seed)),
            )
        except (InputValidationError, SnapshotLimitError) as exc:
            st.error(str(exc))
    if st.sidebar.button("Clear"):
        manager.clear()
        store.clear()
        st.session_state.pop("comparison_summary", None)

    st.sidebar.header("Explanations")
    api_key = st.sidebar.text_input("Gemini API Key", type="password")
    model = st.sidebar.text_input("Model", value="gemini-1.5-flash")

    for snapshot in store.list():
        st.subheader(f"{describe_snapshot(snapshot)}  ·  {snapshot.timestamp}")
        st.table(links_frame(list(snapshot.links)))

        if st.button("Run Simulation", key=f"sim-{snapshot.id}"):
            metrics, log = simulation_log(manager, snapshot.id)
            cols = st.columns(4)
            cols[0].metric("Accepted Calls", metrics.total_calls)
            cols[1].metric("Blocked Calls", metrics.blocked_calls)
            cols[2].metric("Peak Active Calls", metrics.peak_active_calls)
            cols[3].metric("Peak Bandwidth (Mbps)", f"{metrics.peak_bandwidth_usage_mbps:.2f}")
            st.dataframe(log)

        if st.button("Explain Results", key=f"explain-{snapshot.id}", disabled=not api_key):
            try:
                text = request_explanation(snapshot, api_key, model, config)
            except (UpstreamError, requests.RequestException) as exc:
                st.error(f"Error explaining results: {exc}")
            else:
                snapshot = store.attach_explanation(snapshot.id, text, model)
        if snapshot.explanation:
            st.markdown(snapshot.explanation)
            st.caption(f"Model: {snapshot.model_used}")

    snapshots = store.list()
    if len(snapshots) == 2:
        st.header("Comparison")
        first, second = snapshots
        if snapshots_identical(first, second):
            st.info("The selected analyses are identical. No efficiency comparison can be made.")
        else:
            df = compare_snapshots(first, second)
            st.table(df)
            st.bar_chart(df.filter(like="(Mbps)").drop(columns=["Difference (Mbps)"]))

            if st.button("AI Comparison Summary", disabled=not api_key):
                try:
                    st.session_state.comparison_summary = (
                        model,
                        request_comparison_summary(first, second, api_key, model, config),
                    )
                except (UpstreamError, requests.RequestException) as exc:
                    st.error(f"Error generating comparison summary: {exc}")
            if "comparison_summary" in st.session_state:
                summary_model, summary = st.session_state.comparison_summary
                st.subheader(f"AI Comparison Summary ({summary_model})")
                st.markdown(summary)


if __name__ == "__main__":
    run_app()
