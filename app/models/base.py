"""
CompanyModel — Abstract base class for company-scoped models.

Every table owned by a tenant company inherits from CompanyModel
instead of db.Model directly. This adds:
  - company_id FK column with index
  - query_for_company(company_id) classmethod
  - Composite index macro helper
"""

from app.models import db


class CompanyModel(db.Model):
    """Abstract base for company-scoped tables."""
    __abstract__ = True

    company_id = db.Column(
        db.Integer,
        db.ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    @classmethod
    def query_for_company(cls, company_id):
        """Return a query filtered by company_id."""
        return cls.query.filter_by(company_id=company_id)

    @classmethod
    def company_composite_index(cls, table_name, *extra_cols):
        """Helper to build (company_id, ...) composite index name+tuple."""
        name = f"ix_{table_name}_company_{'_'.join(extra_cols)}"
        cols = ("company_id",) + extra_cols
        return db.Index(name, *cols)
