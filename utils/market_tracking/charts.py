# utils/market_tracking/charts.py
"""
Altair Chart Builders for Market Tracking

All visualization components using Altair:
- Stat cards (using st.metric)
- Breakdown bars (top N + Others)
- Market share donuts
- Dual monthly trend (company vs competitor)
- Stacked units per company by sub category

Every builder is theme aware (dark / light). Aggregated tail bars
("Other Companies", "Others") are always drawn in OTHERS_COLOR.

CHANGELOG:
- v1.0.0: Breakdown / donut / monthly charts
- v1.1.0: Theme toggle support, stacked units per company
"""

import logging
from typing import Dict, List, Optional

import altair as alt
import pandas as pd
import streamlit as st

from .analytics import GENERIC_OTHERS_LABEL, CaseMetrics
from .constants import (
    CHART_HEIGHT, CHART_PALETTE, COLORS, COMPANY_LABEL, DEFAULT_THEME,
    OTHERS_COLOR, OTHERS_LABEL, THEME_STATE_KEY, THEMES,
)

logger = logging.getLogger(__name__)

_OTHERS_LABELS = {OTHERS_LABEL, GENERIC_OTHERS_LABEL}


def get_theme_name() -> str:
    """Current chart theme from session state."""
    name = st.session_state.get(THEME_STATE_KEY, DEFAULT_THEME)
    return name if name in THEMES else DEFAULT_THEME


def set_theme_name(name: str):
    """Switch chart theme; callers rerun so every chart re-renders."""
    if name not in THEMES:
        raise ValueError(f"Unknown theme: {name}")
    st.session_state[THEME_STATE_KEY] = name


def bar_colors(labels: List[str], base_color: str) -> List[str]:
    """One color per bar; Others buckets always get OTHERS_COLOR."""
    return [OTHERS_COLOR if label in _OTHERS_LABELS else base_color for label in labels]


def share_colors(labels: List[str]) -> List[str]:
    """Donut slice colors: company first, Others fixed, palette for the rest."""
    colors = []
    palette_index = 0
    for label in labels:
        if label == COMPANY_LABEL:
            colors.append(COLORS['company'])
        elif label in _OTHERS_LABELS:
            colors.append(OTHERS_COLOR)
        else:
            colors.append(CHART_PALETTE[palette_index % len(CHART_PALETTE)])
            palette_index += 1
    return colors


class MarketCharts:
    """
    Chart builders for the market tracking dashboards.

    All methods are static - can be called without instantiation.

    Usage:
        MarketCharts.render_stat_cards(metrics)
        chart = MarketCharts.build_breakdown_bar(df, "Units per Category")
        st.altair_chart(chart, use_container_width=True, theme=None)
    """

    # =========================================================================
    # STAT CARDS (Using st.metric)
    # =========================================================================

    @staticmethod
    def render_stat_cards(metrics: CaseMetrics, show_entities: bool = True):
        """
        Render case stat cards.

        Layout:
        - Row 1: Total cases, company cases, competitor cases, mixed cases
        - Row 2: Company units, competitor units, active doctors, active accounts
        """
        with st.container(border=True):
            st.markdown("**📋 CASES**")
            col1, col2, col3, col4 = st.columns(4)
            with col1:
                st.metric("Total Cases", f"{metrics.total_case_count:,}")
            with col2:
                st.metric("Company Cases", f"{metrics.company_case_count:,}",
                          help="Cases with at least one company product")
            with col3:
                st.metric("Competitor Cases", f"{metrics.competitor_case_count:,}",
                          help="Cases with at least one competitor product")
            with col4:
                st.metric("Mixed Cases", f"{metrics.mixed_case_count:,}",
                          help="Cases with both company and competitor products")

            col1, col2, col3, col4 = st.columns(4)
            with col1:
                st.metric("Company Units", f"{metrics.company_units:,}")
            with col2:
                st.metric("Competitor Units", f"{metrics.competitor_units:,}")
            if show_entities:
                with col3:
                    st.metric("Active Doctors", f"{metrics.active_doctors:,}",
                              help="Distinct doctors in cases with company products")
                with col4:
                    st.metric("Active Accounts", f"{metrics.active_accounts:,}",
                              help="Distinct accounts in cases with company products")

    # =========================================================================
    # BREAKDOWN BAR
    # =========================================================================

    @staticmethod
    def build_breakdown_bar(
        breakdown_df: pd.DataFrame,
        title: str,
        color: str = COLORS['cases'],
        value_title: str = 'Cases',
        category_title: str = '',
        horizontal: bool = True,
        theme: Optional[str] = None,
    ) -> alt.Chart:
        """
        Build a bar chart from a label/value breakdown.

        Bar order follows the breakdown order (Others last).

        Args:
            breakdown_df: DataFrame with columns label, value
            title: Chart title
            color: Bar color for regular groups
            value_title: Value axis title
            horizontal: Horizontal bars when True
        """
        if breakdown_df is None or breakdown_df.empty:
            return MarketCharts._empty_chart("No data available", theme)

        df = breakdown_df.copy()
        df['color'] = bar_colors(list(df['label']), color)
        order = list(df['label'])

        label_enc = alt.X if not horizontal else alt.Y
        value_enc = alt.Y if not horizontal else alt.X

        encodings = {
            ('y' if horizontal else 'x'): label_enc('label:N', sort=order, title=category_title or None),
            ('x' if horizontal else 'y'): value_enc('value:Q', title=value_title),
        }

        bars = alt.Chart(df).mark_bar().encode(
            color=alt.Color('color:N', scale=None, legend=None),
            tooltip=[
                alt.Tooltip('label:N', title=category_title or 'Group'),
                alt.Tooltip('value:Q', title=value_title, format=',.0f'),
            ],
            **encodings,
        )

        text_props = dict(align='left', baseline='middle', dx=4) if horizontal else \
            dict(align='center', baseline='bottom', dy=-5)
        text = alt.Chart(df).mark_text(
            fontSize=10, color=MarketCharts._palette(theme)['text'], **text_props
        ).encode(
            text=alt.Text('value:Q', format=',.0f'),
            **encodings,
        )

        chart = alt.layer(bars, text).properties(height=CHART_HEIGHT, title=title)
        return MarketCharts._apply_theme(chart, theme)

    # =========================================================================
    # SHARE DONUT
    # =========================================================================

    @staticmethod
    def build_share_donut(
        share_df: pd.DataFrame,
        title: str,
        value_title: str = 'Cases',
        theme: Optional[str] = None,
    ) -> alt.Chart:
        """
        Build a donut chart from a label/value breakdown.

        Args:
            share_df: DataFrame with columns label, value
        """
        if share_df is None or share_df.empty or share_df['value'].sum() <= 0:
            return MarketCharts._empty_chart("No data available", theme)

        df = share_df[share_df['value'] > 0].copy()
        total = df['value'].sum()
        df['percent'] = df['value'] / total
        df['order'] = range(len(df))
        labels = list(df['label'])

        chart = alt.Chart(df).mark_arc(innerRadius=60, outerRadius=120).encode(
            theta=alt.Theta('value:Q', stack=True),
            color=alt.Color(
                'label:N',
                scale=alt.Scale(domain=labels, range=share_colors(labels)),
                sort=labels,
                legend=alt.Legend(orient='bottom', title=None, columns=2),
            ),
            order=alt.Order('order:Q'),
            tooltip=[
                alt.Tooltip('label:N', title='Company'),
                alt.Tooltip('value:Q', title=value_title, format=',.0f'),
                alt.Tooltip('percent:Q', title='Share', format='.1%'),
            ],
        ).properties(height=CHART_HEIGHT, title=title)

        return MarketCharts._apply_theme(chart, theme)

    # =========================================================================
    # DUAL MONTHLY TREND
    # =========================================================================

    @staticmethod
    def build_dual_monthly_chart(
        monthly_df: pd.DataFrame,
        value_columns: Dict[str, str],
        title: str,
        value_title: str = 'Cases',
        theme: Optional[str] = None,
    ) -> alt.Chart:
        """
        Build grouped monthly bars: company vs competitor.

        Args:
            monthly_df: DataFrame with a month column already in display order
            value_columns: {column: series label}, company column first
        """
        if monthly_df is None or monthly_df.empty:
            return MarketCharts._empty_chart("No data available", theme)

        month_order = list(monthly_df['month'])
        data = monthly_df.melt(
            id_vars=['month'],
            value_vars=list(value_columns.keys()),
            var_name='series',
            value_name='value',
        )
        data['series'] = data['series'].map(value_columns)

        domain = list(value_columns.values())
        color_scale = alt.Scale(domain=domain, range=[COLORS['company'], COLORS['competitor']][:len(domain)])

        bars = alt.Chart(data).mark_bar().encode(
            x=alt.X('month:N', sort=month_order, title='Month'),
            y=alt.Y('value:Q', title=value_title),
            color=alt.Color('series:N', scale=color_scale, legend=alt.Legend(orient='bottom', title=None)),
            xOffset='series:N',
            tooltip=[
                alt.Tooltip('month:N', title='Month'),
                alt.Tooltip('series:N', title='Series'),
                alt.Tooltip('value:Q', title=value_title, format=',.0f'),
            ],
        )

        text = alt.Chart(data).mark_text(
            align='center', baseline='bottom', dy=-5, fontSize=10,
            color=MarketCharts._palette(theme)['text'],
        ).encode(
            x=alt.X('month:N', sort=month_order),
            y=alt.Y('value:Q'),
            xOffset='series:N',
            text=alt.Text('value:Q', format=',.0f'),
        )

        chart = alt.layer(bars, text).properties(height=CHART_HEIGHT, title=title)
        return MarketCharts._apply_theme(chart, theme)

    # =========================================================================
    # STACKED UNITS PER COMPANY
    # =========================================================================

    @staticmethod
    def build_stacked_units_chart(
        stacked_df: pd.DataFrame,
        title: str = "📦 Units per Company by Sub Category",
        theme: Optional[str] = None,
    ) -> alt.Chart:
        """
        Build stacked bars of units per company within each sub category.

        Args:
            stacked_df: DataFrame with columns group, group_label, company, units
        """
        if stacked_df is None or stacked_df.empty:
            return MarketCharts._empty_chart("No data available", theme)

        companies = list(dict.fromkeys(stacked_df['company']))
        colors = share_colors(companies)
        group_order = list(dict.fromkeys(stacked_df['group_label']))

        chart = alt.Chart(stacked_df).mark_bar().encode(
            x=alt.X('group_label:N', sort=group_order, title=None, axis=alt.Axis(labelAngle=-30)),
            y=alt.Y('sum(units):Q', title='Units'),
            color=alt.Color(
                'company:N',
                scale=alt.Scale(domain=companies, range=colors),
                legend=alt.Legend(orient='bottom', title=None, columns=4),
            ),
            tooltip=[
                alt.Tooltip('group:N', title='Sub Category'),
                alt.Tooltip('company:N', title='Company'),
                alt.Tooltip('units:Q', title='Units', format=',.0f'),
            ],
        ).properties(height=CHART_HEIGHT + 60, title=title)

        return MarketCharts._apply_theme(chart, theme)

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    @staticmethod
    def _palette(theme: Optional[str] = None) -> Dict[str, str]:
        name = theme if theme in THEMES else DEFAULT_THEME
        return THEMES[name]

    @staticmethod
    def _apply_theme(chart: alt.Chart, theme: Optional[str] = None) -> alt.Chart:
        """Axis, legend and title colors for the theme."""
        palette = MarketCharts._palette(theme)
        return chart.configure(
            background='transparent',
        ).configure_axis(
            labelColor=palette['text'],
            titleColor=palette['text'],
            gridColor=palette['grid'],
            domainColor=palette['grid'],
        ).configure_legend(
            labelColor=palette['text'],
            titleColor=palette['text'],
        ).configure_title(
            color=palette['text'],
            anchor='start',
        ).configure_view(
            strokeWidth=0,
        )

    @staticmethod
    def _empty_chart(message: str = "No data available", theme: Optional[str] = None) -> alt.Chart:
        """Create an empty chart with a message."""
        palette = MarketCharts._palette(theme)
        return alt.Chart(pd.DataFrame({'note': [message]})).mark_text(
            text=message,
            fontSize=16,
            color=palette['text'],
        ).properties(
            height=200
        ).configure(
            background='transparent'
        ).configure_view(
            strokeWidth=0
        )


__all__ = [
    'MarketCharts',
    'get_theme_name',
    'set_theme_name',
    'bar_colors',
    'share_colors',
]
