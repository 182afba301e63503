"""Market data provider: daily bars from Alpaca, fundamentals from Yahoo Finance."""

import os
import time
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

import pandas as pd
import pytz
import yfinance as yf
from alpaca.data import StockHistoricalDataClient
from alpaca.data.requests import StockBarsRequest
from alpaca.data.timeframe import TimeFrame
from alpaca.data.enums import Adjustment, DataFeed
from alpaca.common.exceptions import APIError as AlpacaAPIError

from .exceptions import DataError
from .models import MarketSnapshot

logger = logging.getLogger(__name__)


class MarketDataProvider:
    """
    Builds per-ticker market snapshots.

    Price and daily change come from Alpaca daily bars. Market cap and
    3-month average volume come from Yahoo Finance; when Yahoo has no
    volume figure the average is taken over the fetched bars instead.
    """

    FEED_MAP = {
        'iex': DataFeed.IEX,
        'sip': DataFeed.SIP,
        'otc': DataFeed.OTC
    }

    # Retry configuration
    RETRY_STATUS_CODES = {429, 503, 504, 408}
    FAST_FAIL_CODES = {400, 401, 403}
    MAX_RETRIES = 3
    BACKOFF_BASE = 2  # Exponential backoff: 2^attempt seconds

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the data provider.

        Args:
            config: Validated configuration dictionary

        Raises:
            ValueError: If the feed is unknown or credentials are missing
        """
        data = config['data']
        self.config = config

        feed_str = data['feed'].lower()
        if feed_str not in self.FEED_MAP:
            raise ValueError(f"Invalid feed: {feed_str}. Must be one of: {list(self.FEED_MAP.keys())}")

        self.feed = self.FEED_MAP[feed_str]
        self.timezone = pytz.timezone(data['timezone'])
        self.days_history = data['days_history']
        self.adv_lookback_days = data['adv_lookback_days']

        api_key = os.getenv(data['api_key_env'])
        api_secret = os.getenv(data['api_secret_env'])

        if not api_key or not api_secret:
            raise ValueError(
                f"API credentials not found. Please set {data['api_key_env']} "
                f"and {data['api_secret_env']} environment variables."
            )

        self.client = StockHistoricalDataClient(
            api_key=api_key,
            secret_key=api_secret,
            url_override=data.get('base_url')
        )

    def fetch_snapshot(self, ticker: str) -> MarketSnapshot:
        """
        Fetch the current market snapshot for a ticker.

        Args:
            ticker: Stock ticker symbol

        Returns:
            MarketSnapshot; fields are None where data is unavailable

        Raises:
            DataError: If the bar request returns malformed data
        """
        bars = self.fetch_bars(ticker)
        if bars.empty:
            logger.warning(f"No bars returned for {ticker}")
            return MarketSnapshot(ticker=ticker)

        closes = bars['close']
        price = float(closes.iloc[-1])
        change_pct = None
        if len(closes) >= 2 and closes.iloc[-2] > 0:
            change_pct = (price / float(closes.iloc[-2]) - 1) * 100

        market_cap, adv3m = self._fetch_fundamentals(ticker)
        if adv3m is None:
            adv3m = float(bars['volume'].tail(self.adv_lookback_days).mean())

        return MarketSnapshot(
            ticker=ticker,
            price=price,
            change_pct=change_pct,
            market_cap=market_cap,
            adv3m=adv3m,
        )

    def fetch_indicators(
        self,
        ticker: str,
        ema_period: int,
        atr_period: int
    ) -> Tuple[float, float]:
        """
        Latest EMA of closes and ATR for a ticker.

        ATR uses a simple rolling mean of true range.

        Args:
            ticker: Stock ticker symbol
            ema_period: EMA span in bars
            atr_period: ATR window in bars

        Returns:
            Tuple of (ema, atr)

        Raises:
            DataError: If there are not enough bars
        """
        df = self.fetch_bars(ticker)
        needed = max(ema_period, atr_period) + 1
        if len(df) < needed:
            raise DataError(f"Insufficient bars for {ticker}: {len(df)} < {needed}")

        ema = df['close'].ewm(span=ema_period, adjust=False).mean()

        tr_parts = pd.concat([
            df['high'] - df['low'],
            (df['high'] - df['close'].shift(1)).abs(),
            (df['low'] - df['close'].shift(1)).abs()
        ], axis=1)
        atr = tr_parts.max(axis=1).rolling(atr_period).mean()

        if pd.isna(atr.iloc[-1]):
            raise DataError(f"ATR undefined for {ticker}")

        return float(ema.iloc[-1]), float(atr.iloc[-1])

    def fetch_bars(self, ticker: str) -> pd.DataFrame:
        """Fetch `days_history` calendar days of daily bars ending now."""
        end = datetime.now(self.timezone)
        start = end - timedelta(days=self.days_history)
        return self._fetch_bars_with_retry(ticker, start, end)

    def _fetch_fundamentals(self, ticker: str) -> Tuple[Optional[float], Optional[float]]:
        """Market cap and 3-month average volume from Yahoo, None where unknown."""
        try:
            info = yf.Ticker(ticker).fast_info
            market_cap = info.market_cap
            adv3m = info.three_month_average_volume
        except Exception as e:
            logger.warning(f"Could not fetch fundamentals for {ticker}: {e}")
            return None, None

        return (
            float(market_cap) if market_cap else None,
            float(adv3m) if adv3m else None,
        )

    def _fetch_bars_with_retry(self, symbol: str, start: datetime, end: datetime) -> pd.DataFrame:
        """
        Fetch bars with retry logic and exponential backoff.

        Args:
            symbol: Stock ticker symbol
            start: Start datetime
            end: End datetime

        Returns:
            DataFrame with OHLCV data
        """
        last_exception = None

        for attempt in range(self.MAX_RETRIES):
            try:
                df = self._fetch_bars(symbol, start, end)

                if not self._validate_dataframe(df):
                    raise DataError(f"Invalid data structure for {symbol}")

                return df

            except AlpacaAPIError as e:
                last_exception = e
                code = getattr(e, 'status_code', None)
                logger.debug(f"Attempt {attempt + 1}/{self.MAX_RETRIES} for {symbol}: API error {code}")

                if code in self.FAST_FAIL_CODES:
                    raise

                elif code == 422:
                    error_msg = str(e).lower()
                    if 'no data' in error_msg or 'not found' in error_msg:
                        raise DataError(f"No data available for {symbol}")
                    raise

                elif code in self.RETRY_STATUS_CODES and attempt < self.MAX_RETRIES - 1:
                    time.sleep(self.BACKOFF_BASE ** attempt)
                    continue

                raise

            except (ConnectionError, TimeoutError) as e:
                last_exception = e
                logger.debug(f"Attempt {attempt + 1}/{self.MAX_RETRIES} for {symbol}: Network error")

                if attempt < self.MAX_RETRIES - 1:
                    time.sleep(self.BACKOFF_BASE ** attempt)
                    continue
                raise

        logger.warning(f"Giving up on {symbol} after {self.MAX_RETRIES} attempts. Last error: {last_exception}")
        raise DataError(f"Failed to fetch {symbol} after {self.MAX_RETRIES} attempts")

    def _fetch_bars(self, symbol: str, start: datetime, end: datetime) -> pd.DataFrame:
        """
        Raw fetch from Alpaca API.

        Raises:
            DataError: If response shape is unexpected
        """
        request = StockBarsRequest(
            symbol_or_symbols=symbol,
            timeframe=TimeFrame.Day,
            start=start,
            end=end,
            adjustment=Adjustment.ALL,
            feed=self.feed,
        )

        bars = self.client.get_stock_bars(request)

        # The SDK returns a BarSet with a (symbol, timestamp) MultiIndex frame
        if hasattr(bars, 'df'):
            df = bars.df
        elif isinstance(bars, dict) and symbol in bars:
            df = bars[symbol]
        else:
            raise DataError(f"Unexpected response shape from Alpaca SDK for {symbol}")

        if df.empty:
            return df

        if isinstance(df.index, pd.MultiIndex):
            df = df.xs(symbol, level='symbol')

        if df.index.tz is None:
            df.index = df.index.tz_localize('UTC').tz_convert(self.timezone)
        elif df.index.tz != self.timezone:
            df.index = df.index.tz_convert(self.timezone)

        return df

    def _validate_dataframe(self, df: pd.DataFrame) -> bool:
        """Check that a bar frame carries the OHLCV columns (empty is valid)."""
        if df.empty:
            return True

        required_columns = ['open', 'high', 'low', 'close', 'volume']
        return all(col in df.columns for col in required_columns)
