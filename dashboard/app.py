"""Streamlit operator dashboard for CyberSwipe analytics."""
import os

import plotly.express as px
import streamlit as st

from dashboard.client import (
    DashboardAuthError,
    categories_frame,
    check_backend_health,
    daily_sessions_frame,
    fetch_stats,
    generate_demo_sessions,
    get_backend_url,
    memory_megabytes,
    platforms_frame,
    sessions_frame,
)


# Configuration: prioritize Streamlit secrets, then env var, then localhost fallback
def resolve_backend_url():
    try:
        if hasattr(st, "secrets") and "BACKEND_URL" in st.secrets:
            return st.secrets["BACKEND_URL"].rstrip("/")
    except FileNotFoundError:
        pass
    return get_backend_url()


API_BASE_URL = resolve_backend_url()

st.set_page_config(
    page_title="CyberSwipe Analytics",
    page_icon="🛡️",
    layout="wide",
)

st.title("🛡️ CyberSwipe Analytics Dashboard")

# Sidebar
st.sidebar.header("Controls")

backend_ok = check_backend_health(API_BASE_URL)
if backend_ok:
    st.sidebar.markdown("**Backend:** :green_circle: Connected")
else:
    st.sidebar.markdown("**Backend:** :red_circle: Unreachable")
    st.warning("Backend unreachable (may be waking up or misconfigured). Refresh the page to retry.")
st.sidebar.caption(f"`{API_BASE_URL}`")

admin_secret = st.sidebar.text_input(
    "Admin secret",
    value=os.getenv("ADMIN_SECRET_KEY", ""),
    type="password",
    help="Value of ADMIN_SECRET_KEY on the analytics server",
)

if st.sidebar.button("Generate Demo Sessions"):
    if not backend_ok:
        st.sidebar.error("Backend is offline - cannot generate sessions")
    else:
        with st.spinner("Generating demo sessions..."):
            success, message, _ = generate_demo_sessions(API_BASE_URL)
        if success:
            st.sidebar.success(message)
        else:
            st.error(message)

if not admin_secret:
    st.info("Enter the admin secret in the sidebar to load statistics.")
    st.stop()

try:
    stats = fetch_stats(API_BASE_URL, admin_secret)
except DashboardAuthError as e:
    st.error(f"Backend rejected the admin secret: {e}")
    st.stop()

if stats is None:
    st.error("Failed to load statistics from the backend.")
    st.stop()

summary = stats["statistics"]

# Headline metrics
col1, col2, col3, col4 = st.columns(4)
with col1:
    st.metric("Total Sessions", summary["sessions"]["total_sessions"])
with col2:
    st.metric("Card Swipes", summary["events"]["total_swipes"])
with col3:
    st.metric("Swipe Success Rate", f"{summary['events']['swipe_success_rate']:.1f}%")
with col4:
    st.metric("Avg Swipe Duration", f"{summary['events']['avg_swipe_duration']:.2f}s")

col5, col6, col7, col8 = st.columns(4)
with col5:
    st.metric("Avg FPS", f"{summary['performance']['avg_fps']:.1f}")
with col6:
    st.metric("Avg Memory", f"{memory_megabytes(summary['performance']['avg_memory_usage']):.0f} MB")
with col7:
    st.metric("Avg CPU", f"{summary['performance']['avg_cpu_usage']:.1f}%")
with col8:
    st.metric("Avg Latency", f"{summary['performance']['avg_network_latency']:.0f} ms")

st.divider()

col_left, col_right = st.columns(2)

with col_left:
    st.subheader("Category Outcomes")
    categories = categories_frame(stats)
    if categories.empty:
        st.info("No category completions recorded yet.")
    else:
        fig_categories = px.bar(
            categories,
            x="category",
            y=["accepted_cards", "rejected_cards"],
            title="Accepted vs Rejected Cards",
            barmode="stack",
        )
        fig_categories.update_layout(xaxis_title="Category", yaxis_title="Cards")
        st.plotly_chart(fig_categories, use_container_width=True)

with col_right:
    st.subheader("Platforms")
    platforms = platforms_frame(stats)
    if platforms.empty:
        st.info("No sessions recorded yet.")
    else:
        fig_platforms = px.pie(
            platforms,
            names="platform",
            values="total_sessions",
            title="Sessions by Platform",
        )
        st.plotly_chart(fig_platforms, use_container_width=True)

st.subheader("Sessions per Day")
daily = daily_sessions_frame(stats)
if daily.empty:
    st.info("No sessions recorded yet.")
else:
    fig_daily = px.line(daily, x="date", y="sessions", markers=True)
    fig_daily.update_layout(xaxis_title="Day (UTC)", yaxis_title="Sessions")
    st.plotly_chart(fig_daily, use_container_width=True)

st.subheader("Category Details")
st.dataframe(categories_frame(stats), use_container_width=True, hide_index=True)

st.subheader("Recent Sessions")
sessions = sessions_frame(stats)
if not sessions.empty:
    st.dataframe(
        sessions[["session_id", "user_id", "platform", "resolution", "created_at", "ended", "total_cards_processed", "success_rate"]],
        use_container_width=True,
        hide_index=True,
    )

# Footer
st.sidebar.divider()
st.sidebar.caption("CyberSwipe Analytics v1.0.0")
