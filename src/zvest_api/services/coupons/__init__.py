from .catalog import ArticleDiscount, CouponCatalog, CouponTerms, parse_articles

__all__ = ["ArticleDiscount", "CouponCatalog", "CouponTerms", "parse_articles"]
