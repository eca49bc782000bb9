"""
The Last Line: countdown to 100% on Humanity's Last Exam, with nine projection fits.
Run: streamlit run visualize_countdown.py
"""

import logging
import os
from datetime import datetime

import streamlit as st
import plotly.graph_objects as go

import last_line as ll

logging.basicConfig(level=logging.INFO)

st.set_page_config(page_title="The Last Line", layout="wide")

# Tighten default Streamlit padding
st.markdown("""<style>
    .block-container { padding-top: 2rem !important; }
    [data-testid="stTable"] table { margin-top: 0 !important; margin-bottom: 0.5rem !important; }
</style>""", unsafe_allow_html=True)

# ── Helpers ──────────────────────────────────────────────────────────────

FIT_CONFIGS = {
    'linear':      {'label': 'Linear',           'color': '#ff6600', 'dash': [5, 5]},
    'exponential': {'label': 'Exponential',      'color': '#ff0000', 'dash': [15, 5]},
    'mooresLaw':   {'label': "Moore's Law",      'color': '#00cc77', 'dash': [12, 4]},
    'logarithmic': {'label': 'Logarithmic',      'color': '#9900ff', 'dash': [10, 10]},
    'polynomial':  {'label': 'Polynomial',       'color': '#00a3cc', 'dash': [20, 5]},
    'logistic':    {'label': 'Logistic (S-curve)', 'color': '#e6b800', 'dash': [8, 8]},
    'powerLaw':    {'label': 'Power Law',        'color': '#ff00ff', 'dash': [3, 3]},
    'ridge':       {'label': 'Ridge',            'color': '#ff8888', 'dash': [6, 6]},
    'localLinear': {'label': 'Local Linear',     'color': '#44aa44', 'dash': [4, 4]},
}

_PROVIDER_COLORS = {
    'Google': '#4285F4', 'OpenAI': '#00A67E', 'Anthropic': '#D4A574',
    'Meta': '#0668E1', 'Mistral': '#FF7000', 'xAI': '#1DA1F2',
    'Alibaba': '#FF6A00', 'DeepSeek': '#5B6EE1', 'Microsoft': '#00BCF2',
}


def provider_color(provider):
    return _PROVIDER_COLORS.get(provider, '#2c3e50')


def plotly_dash(pattern):
    """Chart.js-style [dash, gap] list -> plotly dash string."""
    return ','.join(f"{int(v)}px" for v in pattern)


def crossing_label(crossing):
    return ll.format_date_short(crossing.date) if crossing is not None else 'Never'


def first_appearances(dataset, labels, top_n=5):
    """Each model once, at the earliest snapshot where it is among the top_n.

    Returns [{'name', 'score', 'provider', 'index', 'rank'}], index into labels.
    """
    plotted = set()
    out = []
    snapshots = sorted(dataset.get('scores') or [], key=lambda s: ll.to_datetime(s['date']))
    for snap in snapshots:
        label = ll.format_date_short(ll.to_datetime(snap['date']))
        if label not in labels:
            continue
        idx = labels.index(label)
        top = sorted(snap.get('models') or [], key=lambda m: m['score'], reverse=True)[:top_n]
        for rank, m in enumerate(top):
            if m['name'] in plotted:
                continue
            plotted.add(m['name'])
            out.append({'name': m['name'], 'score': m['score'],
                        'provider': m.get('provider'), 'index': idx, 'rank': rank})
    return out


def build_projection_figure(proj, markers):
    """Actual best score, first-appearance markers, and one dashed line per fit."""
    fig = go.Figure()
    x = proj.labels

    fig.add_trace(go.Scatter(
        x=x, y=proj.best_scores,
        mode='lines+markers', connectgaps=True,
        line=dict(color='#27ae60', width=5),
        marker=dict(size=10, color='#27ae60', line=dict(color='#000000', width=2)),
        fill='tozeroy', fillcolor='rgba(39,174,96,0.15)',
        name='Actual best score',
    ))

    for mk in markers:
        color = provider_color(mk['provider'])
        y = [None] * len(x)
        y[mk['index']] = mk['score']
        fig.add_trace(go.Scatter(
            x=x, y=y, mode='markers',
            marker=dict(size=9, color=color, line=dict(color='#ffffff', width=1)),
            name=mk['name'], showlegend=False,
            hovertemplate=f"{mk['name']}: %{{y:.1f}}%<extra></extra>",
        ))

    for key in ll.FIT_NAMES:
        cfg = FIT_CONFIGS[key]
        fig.add_trace(go.Scatter(
            x=x, y=proj.projections[key],
            mode='lines+markers', connectgaps=True,
            line=dict(color=cfg['color'], width=3, dash=plotly_dash(cfg['dash'])),
            marker=dict(size=5, color=cfg['color']),
            name=f"{cfg['label']} → {crossing_label(proj.predictions[key])}",
            hovertemplate=f"{cfg['label']}: %{{y:.1f}}%<extra></extra>",
        ))

    fig.add_hline(
        y=proj.target_score,
        line=dict(color='#e74c3c', width=3, dash='dash'),
        annotation_text=f"{proj.target_score:.0f}% - HUMANITY'S LAST EXAM PASSED",
        annotation_position='top left',
    )
    fig.update_layout(
        height=650,
        margin=dict(l=60, r=20, t=30, b=60),
        xaxis=dict(tickangle=-45, gridcolor='rgba(0,0,0,0.1)'),
        yaxis=dict(title='Score (%)', range=[ll.CLAMP_MIN, ll.CLAMP_MAX],
                   ticksuffix='%', dtick=10, gridcolor='rgba(0,0,0,0.1)'),
        hovermode='x unified',
        legend=dict(yanchor='top', y=0.99, xanchor='left', x=0.01,
                    bgcolor='rgba(255,255,255,0.95)'),
        plot_bgcolor='white',
        paper_bgcolor='white',
    )
    return fig


def build_scores_figure(snapshot):
    """Horizontal bars for the latest snapshot, highest first, coloured by provider."""
    models = sorted(snapshot.get('models') or [], key=lambda m: m['score'], reverse=True)
    fig = go.Figure(go.Bar(
        x=[m['score'] for m in models],
        y=[m['name'] for m in models],
        orientation='h',
        marker=dict(color=[provider_color(m.get('provider')) for m in models]),
        hovertext=[f"{m['score']}% ({m.get('provider', '?')})" for m in models],
        hoverinfo='text',
    ))
    fig.update_layout(
        height=max(250, 40 * len(models)),
        margin=dict(l=20, r=20, t=20, b=40),
        xaxis=dict(range=[0, 100], ticksuffix='%'),
        yaxis=dict(autorange='reversed'),
        plot_bgcolor='white',
        paper_bgcolor='white',
    )
    return fig


def predictions_table(proj):
    rows = []
    for key in ll.FIT_NAMES:
        c = proj.predictions[key]
        rows.append({
            'Fit': FIT_CONFIGS[key]['label'],
            'Reaches 100%': crossing_label(c),
            'Days from latest': '—' if c is None else f"{c.days:.0f}",
        })
    return rows


# ── Data loading ─────────────────────────────────────────────────────────

def _data_mtime():
    try:
        return os.path.getmtime(ll.DEFAULT_DATA_PATH)
    except OSError:
        return None


@st.cache_data
def load_data(mtime=None):
    return ll.load_dataset()


# ── Sidebar: countdown fit ───────────────────────────────────────────────

with st.sidebar:
    st.header("Countdown")
    if st.button("Refresh data"):
        st.cache_data.clear()

dataset = load_data(mtime=_data_mtime())
ctx = ll.ProjectionContext(dataset)

# Read ?fit= from URL for deep-linking
_url_fit = st.query_params.get("fit", ll.DEFAULT_FIT)
try:
    ctx.select_fit(_url_fit)
except ll.UnknownFitError:
    st.warning(f"Unknown fit '{_url_fit}'; using {FIT_CONFIGS[ctx.fit_name]['label']}.")

with st.sidebar:
    _choice = st.radio(
        "Countdown fit", list(ll.FIT_NAMES),
        index=ll.FIT_NAMES.index(ctx.fit_name),
        format_func=lambda k: FIT_CONFIGS[k]['label'],
        key="countdown_fit",
        help="Which projection drives the countdown. All nine are drawn on the chart.")
ctx.select_fit(_choice)
st.query_params["fit"] = ctx.fit_name


# ── Page ─────────────────────────────────────────────────────────────────

def render():
    try:
        proj = ctx.projection()
    except ll.InsufficientDataError as e:
        st.error(f"Not enough data to project: {e}")
        st.stop()
    target = ctx.countdown(proj)

    st.title("The Last Line")
    st.caption("Countdown until AI scores 100% on Humanity's Last Exam.")

    # ── Countdown ─────────────────────────────────────────────────────────
    st.subheader(ll.format_date_long(target.target_date))
    if not target.reached:
        st.caption(f"{FIT_CONFIGS[target.fit_name]['label']} never reaches "
                   f"{proj.target_score:.0f}% within {ll.HORIZON_DAYS} days; showing +{ll.FALLBACK_YEARS} years.")
    d, h, m, s = ll.countdown_parts(datetime.now(), target.target_date)
    cd_cols = st.columns(4)
    for col, (label, value) in zip(cd_cols, [("Days", f"{d:03d}"), ("Hours", f"{h:02d}"),
                                             ("Minutes", f"{m:02d}"), ("Seconds", f"{s:02d}")]):
        with col:
            st.metric(label=label, value=value)

    # ── Stats ─────────────────────────────────────────────────────────────
    stats = ll.latest_stats(dataset)
    st_cols = st.columns(4)
    with st_cols[0]:
        st.metric(label="Current best", value=f"{stats['best_score']:.1f}%")
    with st_cols[1]:
        st.metric(label="Best model", value=stats['best_model'] or '—')
    with st_cols[2]:
        st.metric(label="Remaining", value=f"{stats['remaining']:.1f}%")
    with st_cols[3]:
        st.metric(label="Last updated", value=str(stats['last_updated']))

    # ── Charts ────────────────────────────────────────────────────────────
    st.plotly_chart(build_projection_figure(proj, first_appearances(dataset, proj.labels)),
                    use_container_width=True)

    bcol, tcol = st.columns([1.3, 1])
    with bcol:
        st.markdown("**Latest scores**")
        st.plotly_chart(build_scores_figure(ll.latest_snapshot(dataset)), use_container_width=True)
    with tcol:
        st.markdown("**Projected date of 100%**")
        st.table(predictions_table(proj))

    st.caption(f"Projections start from the current best ({proj.current_best:.1f}%) on "
               f"{ll.format_date_short(proj.latest_date)} and are clamped to "
               f"{ll.CLAMP_MIN:.0f}–{ll.CLAMP_MAX:.0f}%. Moore's Law assumes a "
               f"{ll.projection_config(dataset)[0]:.0f}-day doubling time.")


render()
