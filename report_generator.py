"""
Report generator module for rendering monthly report data.

This module turns monthly report figures into the artifacts users receive:
an Excel workbook, a one-page PDF, or a plain text table for the CLI.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple, Union

import matplotlib
matplotlib.use('Agg')  # Non-interactive backend for batch rendering
import matplotlib.pyplot as plt
import pandas as pd
from openpyxl.styles import Font, PatternFill

from database_ops import ReportFormat
from exceptions import ReportError

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color='4472C4', end_color='4472C4', fill_type='solid')
HEADER_FONT = Font(bold=True, color='FFFFFF')
CURRENCY_FORMAT = '$#,##0.00'


def impact_band(percentage: float) -> Tuple[str, str]:
    """Classify a category's share of expenses into an impact band and advice."""
    if percentage > 30:
        return 'High', 'Review & optimize'
    if percentage > 15:
        return 'Medium', 'Monitor closely'
    return 'Low', 'Well controlled'


def savings_assessment(savings_rate: float) -> str:
    """Describe a savings rate."""
    if savings_rate > 20:
        return 'Excellent'
    if savings_rate > 10:
        return 'Good'
    return 'Needs improvement'


class ReportGenerator:
    """
    Render monthly report data to Excel, PDF or text.

    Files are written to ``output_dir`` and are the caller's to delete.
    """

    def __init__(self, output_dir: Optional[Union[str, Path]] = None):
        """
        Initialize the report generator.

        Args:
            output_dir: Directory for rendered files (default: data/tmp)
        """
        self.output_dir = Path(output_dir or 'data/tmp')
        logger.info("Report generator initialized (output_dir=%s)", self.output_dir)

    def format_currency(self, amount) -> str:
        """
        Format amount as currency string.

        Args:
            amount: Amount to format

        Returns:
            Formatted currency string
        """
        if amount < 0:
            return f"-${abs(amount):,.2f}"
        return f"${amount:,.2f}"

    def format_percentage(self, percentage: float) -> str:
        """
        Format percentage string.

        Args:
            percentage: Percentage value

        Returns:
            Formatted percentage string
        """
        return f"{percentage:.1f}%"

    def _output_path(self, report_data, extension: str, output_dir: Optional[Path]) -> Tuple[Path, str]:
        directory = Path(output_dir) if output_dir else self.output_dir
        directory.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime('%Y%m%d%H%M%S%f')
        file_name = f"monthly-report-{report_data.month.replace(' ', '-')}-{stamp}.{extension}"
        return directory / file_name, file_name

    def build_summary_frame(self, report_data) -> pd.DataFrame:
        """Summary rows: income, expenses, net savings, transactions."""
        savings_rate = report_data.savings_rate
        return pd.DataFrame([
            {
                'Metric': 'Total Income',
                'Amount': float(report_data.total_income),
                'Percentage': '100%',
                'Insights': 'Primary income source',
            },
            {
                'Metric': 'Total Expenses',
                'Amount': float(report_data.total_expenses),
                'Percentage': self.format_percentage(report_data.expense_ratio),
                'Insights': 'Monitor spending',
            },
            {
                'Metric': 'Net Savings' if report_data.net_savings >= 0 else 'Net Deficit',
                'Amount': float(abs(report_data.net_savings)),
                'Percentage': self.format_percentage(savings_rate),
                'Insights': 'Great savings!' if report_data.net_savings >= 0 else 'Reduce expenses',
            },
            {
                'Metric': 'Transactions',
                'Amount': report_data.transaction_count,
                'Percentage': '',
                'Insights': f"Avg: {self.format_currency(report_data.average_transaction)}",
            },
        ])

    def build_category_frame(self, report_data) -> pd.DataFrame:
        """Top expense categories with share, rank and impact band."""
        rows = []
        for rank, (category, amount) in enumerate(report_data.top_categories, start=1):
            share = report_data.category_share(amount)
            impact, recommendation = impact_band(share)
            rows.append({
                'Category': category,
                'Amount': float(amount),
                'Percentage': self.format_percentage(share),
                'Rank': f"#{rank}",
                'Budget Impact': impact,
                'Recommendation': recommendation,
            })
        return pd.DataFrame(
            rows,
            columns=['Category', 'Amount', 'Percentage', 'Rank', 'Budget Impact', 'Recommendation']
        )

    def build_insights_frame(self, report_data) -> pd.DataFrame:
        """Derived insights: top category, savings rate, expense ratio, activity."""
        top_category = report_data.top_categories[0][0] if report_data.top_categories else 'N/A'
        savings_rate = report_data.savings_rate
        return pd.DataFrame([
            {
                'Insight': 'Top Expense Category',
                'Value': top_category,
                'Analysis': 'Highest spending area',
                'Action Item': 'Review for optimization',
            },
            {
                'Insight': 'Savings Rate',
                'Value': self.format_percentage(savings_rate),
                'Analysis': savings_assessment(savings_rate),
                'Action Item': 'Increase savings goal' if savings_rate < 10 else 'Maintain current rate',
            },
            {
                'Insight': 'Expense Ratio',
                'Value': self.format_percentage(report_data.expense_ratio),
                'Analysis': 'Expense to income ratio',
                'Action Item': 'Target: Keep below 80%',
            },
            {
                'Insight': 'Transaction Frequency',
                'Value': str(report_data.transaction_count),
                'Analysis': 'Monthly activity level',
                'Action Item': 'Track spending patterns',
            },
        ])

    def generate_excel_report(self, report_data, output_dir: Optional[Path] = None) -> Tuple[Path, str]:
        """
        Write the report to an Excel workbook.

        Args:
            report_data: ReportData with has_data True
            output_dir: Optional override of the output directory

        Returns:
            Tuple of (file_path, file_name)

        Raises:
            ReportError: If the workbook cannot be written
        """
        file_path, file_name = self._output_path(report_data, 'xlsx', output_dir)
        sheets = {
            'Summary': self.build_summary_frame(report_data),
            'Categories': self.build_category_frame(report_data),
            'Insights': self.build_insights_frame(report_data),
        }

        try:
            with pd.ExcelWriter(file_path, engine='openpyxl') as writer:
                for sheet_name, df in sheets.items():
                    df.to_excel(writer, sheet_name=sheet_name, index=False, startrow=2)
                    worksheet = writer.sheets[sheet_name]
                    worksheet['A1'] = f"Monthly Financial Report - {report_data.month}"
                    worksheet['A1'].font = Font(size=16, bold=True)
                    for cell in worksheet[3]:
                        cell.fill = HEADER_FILL
                        cell.font = HEADER_FONT
                    if 'Amount' in df.columns:
                        amount_idx = df.columns.get_loc('Amount')
                        for row in worksheet.iter_rows(min_row=4):
                            # the transaction count shares the Amount column
                            if row[0].value != 'Transactions':
                                row[amount_idx].number_format = CURRENCY_FORMAT
                    for idx, column in enumerate(df.columns, start=1):
                        width = max([len(str(column))] + [len(str(v)) for v in df[column]]) + 4
                        worksheet.column_dimensions[worksheet.cell(row=3, column=idx).column_letter].width = width
        except (OSError, ValueError) as e:
            logger.error(f"Failed to write Excel report: {e}")
            file_path.unlink(missing_ok=True)
            raise ReportError(
                "Failed to write Excel report",
                details={"file_path": str(file_path)},
                original_error=e
            ) from e

        logger.info(f"Saved Excel report to {file_path}")
        return file_path, file_name

    def generate_pdf_report(self, report_data, output_dir: Optional[Path] = None) -> Tuple[Path, str]:
        """
        Write the report to a one-page PDF.

        Args:
            report_data: ReportData with has_data True
            output_dir: Optional override of the output directory

        Returns:
            Tuple of (file_path, file_name)

        Raises:
            ReportError: If the PDF cannot be written
        """
        file_path, file_name = self._output_path(report_data, 'pdf', output_dir)

        fig, (ax_text, ax_bar) = plt.subplots(2, 1, figsize=(8.27, 11.69))  # A4 portrait
        try:
            ax_text.axis('off')
            outcome = 'Savings' if report_data.net_savings >= 0 else 'Deficit'
            lines = [
                f"Total Income:     {self.format_currency(report_data.total_income)}",
                f"Total Expenses:   {self.format_currency(report_data.total_expenses)}"
                f"  ({self.format_percentage(report_data.expense_ratio)} of income)",
                f"Net {outcome}:      {self.format_currency(abs(report_data.net_savings))}",
                f"Transactions:     {report_data.transaction_count}",
                f"Savings Rate:     {self.format_percentage(report_data.savings_rate)}"
                f"  ({savings_assessment(report_data.savings_rate)})",
                f"Avg Transaction:  {self.format_currency(report_data.average_transaction)}",
            ]
            ax_text.set_title(
                f"Financial Report\n{report_data.month}", fontsize=18, fontweight='bold', pad=20
            )
            ax_text.text(0.05, 0.85, "\n".join(lines), fontsize=12, family='monospace', va='top')
            ax_text.text(
                0.05, 0.05, f"Generated on {datetime.now():%Y-%m-%d}", fontsize=8, color='gray'
            )

            if report_data.top_categories:
                names = [name for name, _ in report_data.top_categories]
                amounts = [float(amount) for _, amount in report_data.top_categories]
                bars = ax_bar.barh(names[::-1], amounts[::-1], color='#667eea')
                for bar, (_, amount) in zip(bars, report_data.top_categories[::-1]):
                    ax_bar.text(
                        bar.get_width(), bar.get_y() + bar.get_height() / 2,
                        f" {self.format_percentage(report_data.category_share(amount))}",
                        va='center', fontsize=10
                    )
                ax_bar.set_xlabel('Amount ($)', fontsize=11)
                ax_bar.set_title('Top Expense Categories', fontsize=14, fontweight='bold')
                ax_bar.grid(True, alpha=0.3, axis='x')
            else:
                ax_bar.axis('off')
                ax_bar.text(0.5, 0.5, 'No expenses recorded', ha='center', fontsize=12)

            plt.tight_layout()
            fig.savefig(file_path, format='pdf')
        except (OSError, ValueError) as e:
            logger.error(f"Failed to write PDF report: {e}")
            file_path.unlink(missing_ok=True)
            raise ReportError(
                "Failed to write PDF report",
                details={"file_path": str(file_path)},
                original_error=e
            ) from e
        finally:
            plt.close(fig)

        logger.info(f"Saved PDF report to {file_path}")
        return file_path, file_name

    def generate_text_report(self, report_data) -> str:
        """
        Generate a fixed-width text report.

        Args:
            report_data: ReportData

        Returns:
            Formatted text report
        """
        if not report_data.has_data:
            return f"\nNo transactions found for {report_data.month}\n"

        report_lines: List[str] = [
            "=" * 80,
            f"MONTHLY FINANCIAL REPORT ({report_data.month})",
            "=" * 80,
            "",
            f"Total Income:           {self.format_currency(report_data.total_income):>20}",
            f"Total Expenses:         {self.format_currency(report_data.total_expenses):>20}",
            "-" * 80,
            f"Net Savings:            {self.format_currency(report_data.net_savings):>20}"
            f"  ({self.format_percentage(report_data.savings_rate)} savings rate)",
            "",
            f"Total Transactions:     {report_data.transaction_count:>20}",
            "",
            f"{'Top Category':<30} {'Amount':>15} {'Share':>12}",
            "-" * 80,
        ]
        for category, amount in report_data.top_categories:
            report_lines.append(
                f"{category:<30} "
                f"{self.format_currency(amount):>15} "
                f"{self.format_percentage(report_data.category_share(amount)):>12}"
            )
        report_lines.append("=" * 80)

        return "\n".join(report_lines)

    def render(
        self,
        report_data,
        report_format: Union[ReportFormat, str],
        output_dir: Optional[Path] = None
    ) -> Tuple[Path, str]:
        """
        Render the report in the requested attachment format.

        Raises:
            ReportError: If the format is unknown or rendering fails
        """
        try:
            fmt = report_format if isinstance(report_format, ReportFormat) else ReportFormat(report_format)
        except ValueError as e:
            raise ReportError(
                f"Unsupported report format: {report_format}",
                details={"format": report_format},
                original_error=e
            ) from e

        if fmt is ReportFormat.PDF:
            return self.generate_pdf_report(report_data, output_dir)
        return self.generate_excel_report(report_data, output_dir)
