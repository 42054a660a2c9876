import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
import logging
from datetime import datetime, timezone

import pandas as pd
import pytz
import streamlit as st

from slope_match.controller import DashboardController
from slope_match.data_layer.config import DEFAULT_WEIGHTS
from slope_match.data_layer.models import MetricName
from slope_match.logic_engine import build_forecast_figure, build_resort_map, build_score_figure

# =============================================================================
# 1. PAGE CONFIGURATION
# =============================================================================
st.set_page_config(
    page_title="Slope Match",
    page_icon="❄️",
    layout="wide",
    initial_sidebar_state="expanded",
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

# =============================================================================
# 2. COLOUR PALETTE & CSS
# =============================================================================
BG_CARD     = "rgba(30, 30, 35, 0.55)"
BORDER      = "rgba(255, 255, 255, 0.07)"
TEXT_PRI    = "#f4f4f5"
TEXT_SEC    = "#a1a1aa"
TEXT_MUTED  = "#52525b"
ACCENT_BLUE = "#38bdf8"
ACCENT_TEAL = "#2dd4bf"
ACCENT_ROSE = "#fb7185"

st.markdown(f"""
<style>
@import url('https://fonts.googleapis.com/css2?family=JetBrains+Mono:wght@400;700&family=Inter:wght@300;400;500;600;800&display=swap');

html, body, [class*="css"] {{ font-family: 'Inter', sans-serif; color: {TEXT_PRI}; }}
.block-container {{ padding: 2.5rem 2rem 5rem !important; max-width: 1400px !important; margin: 0 auto; }}

.glass-card {{
    background: {BG_CARD};
    border: 1px solid {BORDER};
    border-radius: 14px;
    padding: 1.5rem;
    margin-bottom: 0.85rem;
}}
.hero-stat {{
    font-size: clamp(2.5rem, 5vw, 4.5rem);
    font-weight: 800;
    line-height: 1;
    letter-spacing: -0.04em;
}}
.hero-label {{
    font-family: 'JetBrains Mono', monospace;
    text-transform: uppercase;
    color: {ACCENT_BLUE};
    font-size: 0.75rem;
    letter-spacing: 0.14em;
    margin-bottom: 0.6rem;
}}
.hero-sub {{ font-size: 1.1rem; color: {TEXT_SEC}; margin-top: 0.35rem; }}
.section-label {{
    font-family: 'JetBrains Mono', monospace;
    font-size: 0.65rem;
    letter-spacing: 0.16em;
    text-transform: uppercase;
    color: {TEXT_MUTED};
    margin: 0.25rem 0 0.85rem;
}}
.pill {{
    display: inline-block;
    padding: 0.22rem 0.65rem;
    border-radius: 4px;
    font-size: 0.68rem;
    font-weight: 600;
    letter-spacing: 0.06em;
    text-transform: uppercase;
}}
.pill-teal {{ background:rgba(45,212,191,0.1);  color:{ACCENT_TEAL}; }}
.pill-rose {{ background:rgba(251,113,133,0.1); color:{ACCENT_ROSE}; }}
.pill-blue {{ background:rgba(56,189,248,0.1);  color:{ACCENT_BLUE}; }}

#MainMenu, footer, .stDeployButton {{ visibility: hidden; }}
</style>
""", unsafe_allow_html=True)

# =============================================================================
# 3. DATA ENGINE (one controller per process)
# =============================================================================

@st.cache_resource(show_spinner=False)
def get_controller() -> DashboardController:
    controller = DashboardController()
    controller.start()
    return controller

controller = get_controller()
registry   = controller.registry
names      = {r.id: r.name for r in registry.resorts}


def fmt(value, unit="", digits=0):
    return "—" if value is None else f"{value:.{digits}f}{unit}"


def local_time(ts, tz_str):
    if ts is None:
        return "—"
    return ts.replace(tzinfo=timezone.utc).astimezone(pytz.timezone(tz_str)).strftime("%a %H:%M")

# =============================================================================
# 4. SIDEBAR: PREFERENCES & SOURCE STATUS
# =============================================================================
SLIDER_LABELS = {
    MetricName.WARMTH:     "🌡️ Warmth",
    MetricName.FRESH_SNOW: "❄️ Fresh snow",
    MetricName.BASE_DEPTH: "📏 Base depth",
    MetricName.OPEN_RUNS:  "🎿 Open runs",
}

with st.sidebar:
    st.markdown('<div class="section-label">What matters to you?</div>', unsafe_allow_html=True)
    weights = {
        metric.value: st.slider(label, 0.0, 1.0, DEFAULT_WEIGHTS[metric.value], 0.05, key=f"w_{metric.value}")
        for metric, label in SLIDER_LABELS.items()
    }

    st.divider()
    st.markdown('<div class="section-label">Data Sources</div>', unsafe_allow_html=True)
    for name, status in controller.status().items():
        if status.last_success_at is None:
            pill = '<span class="pill pill-rose">Loading</span>'
        elif status.stale:
            pill = '<span class="pill pill-rose">Stale</span>'
        else:
            pill = '<span class="pill pill-teal">Live</span>'
        st.markdown(f"{pill}&nbsp; **{name}**", unsafe_allow_html=True)
        if status.last_error:
            st.caption(f"Last attempt failed: {status.last_error}")

    if st.button("↻  Refresh now", key="refresh_btn"):
        with st.spinner("Refreshing sources…"):
            results = controller.refresh_all()
        failed = [name for name, ok in results.items() if not ok]
        if failed:
            st.warning(f"Kept previous data for: {', '.join(failed)}")

# =============================================================================
# 5. RECOMMENDATION
# =============================================================================
result = controller.rank(weights)
winner = registry.get(result.winner)
detail = controller.resort_detail(winner.id)

if controller.weather() is None and controller.snow() is None:
    st.info("Waiting for the first weather and snow updates…")

hero_left, hero_right = st.columns([3, 2], gap="large")
with hero_left:
    st.markdown(f"""
    <div class="glass-card">
        <div class="hero-label">Best match right now</div>
        <div class="hero-stat">{winner.name}</div>
        <div class="hero-sub">{detail.description or "Conditions loading"} · {winner.elevation}</div>
    </div>
    """, unsafe_allow_html=True)

    m1, m2, m3, m4 = st.columns(4)
    with m1:
        st.metric("Feels Like", fmt(detail.feels_like, "°F"))
    with m2:
        st.metric("Fresh 48h", fmt(detail.snow_48h, '"'))
    with m3:
        st.metric("Base Depth", fmt(detail.base_depth, '"'))
    with m4:
        runs = fmt(detail.open_trails)
        if detail.max_trails is not None:
            runs = f"{runs}/{detail.max_trails:.0f}"
        st.metric("Open Runs", runs)

with hero_right:
    st.markdown('<div class="section-label">Combined Score</div>', unsafe_allow_html=True)
    st.plotly_chart(build_score_figure(result, names), use_container_width=True)

# =============================================================================
# 6. MAP & FORECAST
# =============================================================================
map_col, chart_col = st.columns([2, 3], gap="large")
with map_col:
    st.markdown('<div class="section-label">Resorts</div>', unsafe_allow_html=True)
    st.plotly_chart(build_resort_map(registry, result.winner), use_container_width=True)

with chart_col:
    st.markdown('<div class="section-label">Predicted Snowfall · next 72h</div>', unsafe_allow_html=True)
    aligned = controller.forecast()
    if controller.snow() is None:
        st.caption("Snow forecast unavailable until the snapshot loads")
    else:
        st.plotly_chart(build_forecast_figure(aligned, names), use_container_width=True)
        if aligned.leader:
            st.caption(f"Most snow expected: {names[aligned.leader]}")

# =============================================================================
# 7. RESORT DETAIL
# =============================================================================
st.markdown('<div class="section-label">Resort Detail</div>', unsafe_allow_html=True)
selected = st.selectbox(
    "Resort",
    registry.ids,
    index=registry.ids.index(result.winner),
    format_func=lambda rid: names[rid],
    label_visibility="collapsed",
)
info = controller.resort_detail(selected)
resort = info.resort

d1, d2, d3 = st.columns(3, gap="large")
with d1:
    if resort.logo and os.path.exists(resort.logo):
        st.image(resort.logo, width=120)
    st.markdown(f"**{resort.name}** · {resort.elevation}")
    st.caption(f"Weather as of {local_time(info.weather_as_of, resort.timezone)} · "
               f"Snow report as of {local_time(info.snow_as_of, resort.timezone)}")
    st.metric("Feels Like", fmt(info.feels_like, "°F"))
    st.markdown(f'<span class="pill pill-blue">{info.condition or "—"}</span>', unsafe_allow_html=True)
with d2:
    st.metric("Base Depth", fmt(info.base_depth, '"'))
    st.metric("Fresh 48h", fmt(info.snow_48h, '"'))
    st.caption(f"Surface: {info.surface or '—'}")
with d3:
    st.metric("Trails Open", f"{fmt(info.open_trails)} / {fmt(info.max_trails)}")
    st.metric("Lifts Open", f"{fmt(info.open_lifts)} / {fmt(info.max_lifts)}")

forecast_rows = pd.DataFrame({
    "Horizon": ["24h", "48h", "72h"],
    "Predicted": [fmt(info.predicted_24h, '"', 1), fmt(info.predicted_48h, '"', 1), fmt(info.predicted_72h, '"', 1)],
})
st.dataframe(forecast_rows, hide_index=True, use_container_width=True)

with st.expander("Per-metric ranks"):
    ranks = pd.DataFrame(result.ranks).rename(index=names)
    st.dataframe(ranks, use_container_width=True)

st.caption(f"Rendered {datetime.now().strftime('%H:%M:%S')}")
