"""
Tests for the holdings parser - both export dialects, fixture CSV strings.
"""

import warnings

import pandas as pd
import pytest

from ingestion.transforms.holdings_parser import (
    DIALECT_BROKERAGE,
    DIALECT_EXTENDED,
    decode_csv,
    detect_dialect,
    infer_asset_type,
    normalize_account_type,
    parse_holdings,
)


BROKERAGE_CSV = (
    '"Brokerage services are provided by Example Brokerage Services LLC"\n'
    '\n'
    'Account Name/Number,Symbol,Description,Quantity,Last Price,Current Value,'
    'Total Gain/Loss Dollar,Total Gain/Loss Percent,Cost Basis Per Share,Cost Basis Total\n'
    'ROTH IRA 123456789,AAPL,APPLE INC,"1,250.5",$190.00,"$237,595.00",'
    '"+$37,515.00",+18.75%,$160.00,"$200,080.00"\n'
    ',MSFT,MICROSOFT CORP,10,$400.00,"$4,000.00",,,,"$3,500.00"\n'
    ',SPAXX**,HELD IN MONEY MARKET,,,"$1,000.00",,,,\n'
    'Individual Z12345678,VOO,VANGUARD S&P 500 ETF,0,$500.00,$0.00,,,,\n'
    ',nvda,NVIDIA CORP,5,$100.00,,,,$80.00,,extra,columns\n'
    ',Pending Activity,,,,"($12.00)",,,,\n'
    '\n'
    '"The data and information in this spreadsheet is provided to you solely for your use"\n'
)

EXTENDED_CSV = (
    "Holding,Holdings' name,Portfolios,Shares,Share price,Cost basis,Current value,"
    "Capital gain,Capital gain,Daily change,Daily change,Total profit,Total profit,"
    "Sector,Expense ratio,Dividend yield,Country,Currency\n"
    "AAPL,Apple Inc,Roth IRA,10,190,1500,1900,400,26.67,5,0.26,450,30,"
    "Technology,0,0.5,US,USD\n"
    "VOO,Vanguard S&P 500 ETF,Individual Brokerage,2,500,800,1000,200,25,3,0.3,"
    "210,26.25,,0.03,1.3,US,USD\n"
    "FXAIX,Fidelity 500 Index Fund,401k,3,200,500,600,,,,,,,,0.015,,US,USD\n"
    "ZERO,Zero Shares Corp,Roth IRA,0,10,0,0,0,0,0,0,0,0,Energy,0,0,US,USD\n"
    ",Orphan row,Roth IRA,5,10,50,50,0,0,0,0,0,0,,0,0,US,USD\n"
)


def _by_symbol(holdings):
    return {h.symbol: h for h in holdings}


class TestDialectDetection:
    """Dialect is chosen from header content only."""

    def test_extended_header(self):
        assert detect_dialect(EXTENDED_CSV) == DIALECT_EXTENDED

    def test_brokerage_header(self):
        assert detect_dialect(BROKERAGE_CSV) == DIALECT_BROKERAGE
        assert detect_dialect('Account Name,Symbol,Quantity\n') == DIALECT_BROKERAGE

    def test_partial_markers_are_brokerage(self):
        assert detect_dialect('Holding,Shares,Price\n') == DIALECT_BROKERAGE

    def test_bom_is_stripped(self):
        text = decode_csv(b'\xef\xbb\xbf' + EXTENDED_CSV.encode('utf-8'))
        assert text.startswith('Holding')
        assert detect_dialect(text) == DIALECT_EXTENDED

    def test_undecodable_bytes_are_replaced(self):
        text = decode_csv(b'Account Name,Symbol\n\xff\xfe,AAPL\n')
        assert '\ufffd' in text


class TestBrokerageDialect:
    """Tests for account-oriented positions exports."""

    def test_rows_kept_and_skipped(self):
        holdings = parse_holdings(BROKERAGE_CSV.encode('utf-8'))

        assert [h.symbol for h in holdings] == ['AAPL', 'MSFT', 'NVDA']

    def test_quantity_with_thousands_separator(self):
        aapl = _by_symbol(parse_holdings(BROKERAGE_CSV))['AAPL']

        assert aapl.quantity == pytest.approx(1250.5)
        assert aapl.market_value == pytest.approx(237595.0)
        assert aapl.gain_loss == pytest.approx(37515.0)
        assert aapl.gain_loss_percent == pytest.approx(18.75)
        assert aapl.account_type == 'Roth IRA'

    def test_account_carried_forward(self):
        holdings = _by_symbol(parse_holdings(BROKERAGE_CSV))

        assert holdings['MSFT'].account_type == 'Roth IRA'
        # Account switched on the zero-quantity VOO row, which itself is dropped
        assert holdings['NVDA'].account_type == 'Individual'

    def test_cost_basis_reconstruction(self):
        holdings = _by_symbol(parse_holdings(BROKERAGE_CSV))

        msft = holdings['MSFT']
        assert msft.total_cost_basis == pytest.approx(3500.0)
        assert msft.cost_basis == pytest.approx(350.0)

        nvda = holdings['NVDA']
        assert nvda.total_cost_basis == pytest.approx(400.0)
        assert nvda.market_value == pytest.approx(500.0)

    def test_blank_gain_loss_is_derived(self):
        holdings = _by_symbol(parse_holdings(BROKERAGE_CSV))

        assert holdings['MSFT'].gain_loss == pytest.approx(500.0)
        assert holdings['MSFT'].gain_loss_percent == pytest.approx(500.0 / 3500.0 * 100)
        assert holdings['NVDA'].gain_loss == pytest.approx(100.0)
        assert holdings['NVDA'].gain_loss_percent == pytest.approx(25.0)

    def test_zero_quantity_dropped(self):
        csv = (
            'Account Name,Symbol,Description,Quantity,Last Price\n'
            'Individual,AAPL,APPLE INC,0,$190.00\n'
            'Individual,MSFT,MICROSOFT CORP,-3,$400.00\n'
        )
        assert parse_holdings(csv) == []

    def test_account_number_header(self):
        csv = (
            'Account Number,Symbol,Quantity,Last Price\n'
            'Rollover IRA,IBM,2,$150.00\n'
        )
        holdings = parse_holdings(csv)

        assert len(holdings) == 1
        assert holdings[0].account_type == 'Traditional IRA'
        assert holdings[0].market_value == pytest.approx(300.0)

    def test_cash_sweep_and_footer_rows_skipped(self):
        csv = (
            'Account Name,Symbol,Quantity,Last Price\n'
            'Individual,FCASH**,100,$1.00\n'
            'Individual,FDRXX,100,$1.00\n'
            'Individual,Account Total,1,$1.00\n'
            'Individual,Symbol,1,$1.00\n'
        )
        assert parse_holdings(csv) == []


class TestExtendedDialect:
    """Tests for dividend/tax-rich tracker exports."""

    def test_rows_kept_and_skipped(self):
        holdings = parse_holdings(EXTENDED_CSV.encode('utf-8'))

        assert [h.symbol for h in holdings] == ['AAPL', 'VOO', 'FXAIX']

    def test_duplicate_columns_resolved_by_position(self):
        aapl = _by_symbol(parse_holdings(EXTENDED_CSV))['AAPL']

        assert aapl.gain_loss == pytest.approx(400.0)
        assert aapl.gain_loss_percent == pytest.approx(26.67)
        assert aapl.daily_change_dollar == pytest.approx(5.0)
        assert aapl.daily_change_percent == pytest.approx(0.26)
        assert aapl.total_profit == pytest.approx(450.0)
        assert aapl.total_profit_percent == pytest.approx(30.0)

    def test_extended_fields(self):
        aapl = _by_symbol(parse_holdings(EXTENDED_CSV))['AAPL']

        assert aapl.description == 'Apple Inc'
        assert aapl.cost_basis == pytest.approx(150.0)
        assert aapl.total_cost_basis == pytest.approx(1500.0)
        assert aapl.current_price == pytest.approx(190.0)
        assert aapl.sector == 'Technology'
        assert aapl.dividend_yield == pytest.approx(0.5)
        assert aapl.country == 'US'
        assert aapl.currency == 'USD'
        assert aapl.account_type == 'Roth IRA'

    def test_asset_type_and_account_inference(self):
        holdings = _by_symbol(parse_holdings(EXTENDED_CSV))

        assert holdings['AAPL'].asset_type == 'Stock'
        assert holdings['VOO'].asset_type == 'ETF'
        assert holdings['VOO'].account_type == 'Individual'
        assert holdings['FXAIX'].asset_type == 'Mutual Fund'
        assert holdings['FXAIX'].account_type == '401(k)'

    def test_blank_gain_cells_are_derived(self):
        fxaix = _by_symbol(parse_holdings(EXTENDED_CSV))['FXAIX']

        assert fxaix.gain_loss == pytest.approx(100.0)
        assert fxaix.gain_loss_percent == pytest.approx(20.0)


class TestEdgeCases:

    def test_empty_input(self):
        assert parse_holdings(b'') == []
        assert parse_holdings('   \n') == []

    def test_header_only(self):
        assert parse_holdings('Account Name,Symbol,Quantity\n') == []

    def test_every_holding_is_valid(self):
        for csv in (BROKERAGE_CSV, EXTENDED_CSV):
            for holding in parse_holdings(csv):
                assert holding.quantity > 0
                assert holding.symbol
                assert holding.symbol == holding.symbol.upper()

    def test_wide_rows_truncated_without_warning(self):
        with warnings.catch_warnings():
            warnings.simplefilter('error', pd.errors.ParserWarning)
            holdings = _by_symbol(parse_holdings(BROKERAGE_CSV))

        assert holdings['NVDA'].quantity == 5
        assert holdings['NVDA'].cost_basis == 80.0


class TestNormalizeAccountType:

    @pytest.mark.parametrize('raw,expected', [
        ('ROTH IRA 123456789', 'Roth IRA'),
        ('Traditional IRA', 'Traditional IRA'),
        ('Rollover IRA', 'Traditional IRA'),
        ('rollover', 'Traditional IRA'),
        ('Company 401k', '401(k)'),
        ('My 401(K) Plan', '401(k)'),
        ('INDIVIDUAL - TOD', 'Individual'),
        ('Brokerage', 'Individual'),
        ('Health Savings HSA', 'HSA'),
        ('529 College Savings', '529'),
        ('TIAA Retirement', 'TIAA'),
        ('Combined Accounts', 'TIAA'),
        ('SEP-IRA', 'IRA'),
        ('  Joint WROS  ', 'Joint WROS'),
        ('', 'Unknown'),
    ])
    def test_priority_rules(self, raw, expected):
        assert normalize_account_type(raw) == expected


class TestInferAssetType:

    def test_fund_with_brand_is_etf(self):
        assert infer_asset_type(0.03, '', 'iShares Core S&P 500') == 'ETF'

    def test_fund_without_brand_is_mutual_fund(self):
        assert infer_asset_type(0.5, '', 'Contrafund') == 'Mutual Fund'

    def test_sector_means_stock(self):
        assert infer_asset_type(0, 'Technology', 'Apple Inc') == 'Stock'

    def test_name_hints_without_sector(self):
        assert infer_asset_type(0, 'n/a', 'Total Market Index') == 'ETF'
        assert infer_asset_type(0, '', 'Some ETF Trust') == 'ETF'
        assert infer_asset_type(0, '', 'Apple Inc') == 'Stock'
