"""TradingView embed widgets shown on the dashboard.

Each widget is a script URL plus a JSON config; the page template drops
them into ``<script>`` tags. ``dashboard_widgets()`` returns them in page
order.
"""

from __future__ import annotations

_EMBED_BASE = "https://s3.tradingview.com/external-embedding"

TICKER_TAPE = {
    "id": "ticker-tape",
    "script_url": f"{_EMBED_BASE}/embed-widget-ticker-tape.js",
    "height": 56,
    "config": {
        "symbols": [
            {"proName": "FOREXCOM:SPXUSD", "title": "S&P 500 Index"},
            {"proName": "FOREXCOM:NSXUSD", "title": "US 100 Cash CFD"},
            {"proName": "FX_IDC:EURUSD", "title": "EUR to USD"},
            {"proName": "BITSTAMP:BTCUSD", "title": "Bitcoin"},
            {"proName": "BITSTAMP:ETHUSD", "title": "Ethereum"},
        ],
        "showSymbolLogo": True,
        "isTransparent": True,
        "displayMode": "adaptive",
        "colorTheme": "dark",
        "locale": "en",
    },
}


def _tab(title: str, symbols: list[tuple[str, str]]) -> dict:
    return {
        "title": title,
        "originalTitle": title,
        "symbols": [{"s": s, "d": d} for s, d in symbols],
    }


MARKET_OVERVIEW = {
    "id": "market-overview",
    "script_url": f"{_EMBED_BASE}/embed-widget-market-overview.js",
    "height": 660,
    "config": {
        "colorTheme": "dark",
        "dateRange": "12M",
        "showChart": True,
        "locale": "en",
        "largeChartUrl": "",
        "isTransparent": False,
        "showSymbolLogo": True,
        "showFloatingTooltip": False,
        "width": "100%",
        "height": "660",
        "plotLineColorGrowing": "rgba(41, 98, 255, 1)",
        "plotLineColorFalling": "rgba(41, 98, 255, 1)",
        "gridLineColor": "rgba(240, 243, 250, 0)",
        "scaleFontColor": "rgba(120, 123, 134, 1)",
        "belowLineFillColorGrowing": "rgba(41, 98, 255, 0.12)",
        "belowLineFillColorFalling": "rgba(41, 98, 255, 0.12)",
        "belowLineFillColorGrowingBottom": "rgba(41, 98, 255, 0)",
        "belowLineFillColorFallingBottom": "rgba(41, 98, 255, 0)",
        "symbolActiveColor": "rgba(41, 98, 255, 0.12)",
        "tabs": [
            _tab("Indices", [
                ("FOREXCOM:SPXUSD", "S&P 500 Index"),
                ("FOREXCOM:NSXUSD", "US 100 Cash CFD"),
                ("FOREXCOM:DJI", "Dow Jones Industrial Average Index"),
                ("INDEX:NKY", "Nikkei 225"),
                ("INDEX:DEU40", "DAX Index"),
                ("FOREXCOM:UKXGBP", "FTSE 100 Index"),
            ]),
            _tab("Futures", [
                ("CME_MINI:ES1!", "S&P 500"),
                ("CME:6E1!", "Euro"),
                ("COMEX:GC1!", "Gold"),
                ("NYMEX:CL1!", "WTI Crude Oil"),
                ("NYMEX:NG1!", "Gas"),
                ("CBOT:ZC1!", "Corn"),
            ]),
            _tab("Bonds", [
                ("CBOT:ZB1!", "T-Bond"),
                ("CBOT:UB1!", "Ultra T-Bond"),
                ("EUREX:FGBL1!", "Euro Bund"),
                ("EUREX:FBTP1!", "Euro BTP"),
                ("EUREX:FGBM1!", "Euro BOBL"),
            ]),
            _tab("Forex", [
                ("FX:EURUSD", "EUR to USD"),
                ("FX:GBPUSD", "GBP to USD"),
                ("FX:USDJPY", "USD to JPY"),
                ("FX:USDCHF", "USD to CHF"),
                ("FX:AUDUSD", "AUD to USD"),
                ("FX:USDCAD", "USD to CAD"),
            ]),
        ],
    },
}

STOCK_HEATMAP = {
    "id": "stock-heatmap",
    "script_url": f"{_EMBED_BASE}/embed-widget-stock-heatmap.js",
    "height": 660,
    "config": {
        "exchanges": [],
        "dataSource": "SPX500",
        "grouping": "sector",
        "blockSize": "market_cap_basic",
        "blockColor": "change",
        "locale": "en",
        "symbolUrl": "",
        "colorTheme": "dark",
        "hasTopBar": False,
        "isDataSetEnabled": False,
        "isZoomEnabled": True,
        "hasSymbolTooltip": True,
        "isMonoSize": False,
        "width": "100%",
        "height": "660",
    },
}

ECONOMIC_CALENDAR = {
    "id": "economic-calendar",
    "title": "Economic Calendar",
    "script_url": f"{_EMBED_BASE}/embed-widget-events.js",
    "height": 400,
    "config": {
        "colorTheme": "dark",
        "isTransparent": False,
        "width": "100%",
        "height": "400",
        "locale": "en",
        "importanceFilter": "-1,0,1",
        "countryFilter": "us,eu,itm,ru,kr,de,tr,jp,ch,au,gb,in,fr,ca,br,mx",
    },
}

TOP_STORIES = {
    "id": "top-stories",
    "title": "Top Stories",
    "script_url": f"{_EMBED_BASE}/embed-widget-timeline.js",
    "height": 400,
    "config": {
        "feedMode": "market",
        "market": "stock",
        "isTransparent": False,
        "displayMode": "regular",
        "width": "100%",
        "height": "400",
        "colorTheme": "dark",
        "locale": "en",
    },
}


def symbol_chart(symbol: str) -> dict:
    """Advanced chart widget for one symbol."""
    return {
        "id": f"chart-{symbol.lower()}",
        "script_url": f"{_EMBED_BASE}/embed-widget-advanced-chart.js",
        "height": 600,
        "config": {
            "symbol": symbol.upper(),
            "interval": "D",
            "timezone": "Etc/UTC",
            "theme": "dark",
            "style": "1",
            "locale": "en",
            "allow_symbol_change": False,
            "width": "100%",
            "height": "600",
        },
    }


def dashboard_widgets() -> dict[str, dict]:
    return {
        "ticker_tape": TICKER_TAPE,
        "market_overview": MARKET_OVERVIEW,
        "stock_heatmap": STOCK_HEATMAP,
        "economic_calendar": ECONOMIC_CALENDAR,
        "top_stories": TOP_STORIES,
    }
