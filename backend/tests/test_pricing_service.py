import unittest
from decimal import Decimal
from types import SimpleNamespace

from tillpoint.errors import InvalidPricing
from tillpoint.services.pricing_service import (
    ManualOverride,
    PricedLine,
    allocate_proportionally,
    compute_pricing,
    round_half_up,
    rule_discount_cents,
)


def flat_rule(flat_cents, min_subtotal_cents=0, rule_id=1):
    return SimpleNamespace(
        id=rule_id,
        name=f"{flat_cents} off",
        kind="FLAT",
        percent=None,
        flat_cents=flat_cents,
        min_subtotal_cents=min_subtotal_cents,
    )


def percent_rule(percent, min_subtotal_cents=0, rule_id=1):
    return SimpleNamespace(
        id=rule_id,
        name=f"{percent}% off",
        kind="PERCENT",
        percent=percent,
        flat_cents=None,
        min_subtotal_cents=min_subtotal_cents,
    )


class PricingServiceTests(unittest.TestCase):
    def setUp(self):
        self.lines = [
            PricedLine(product_id=1, quantity=2, unit_price_cents=10000),
            PricedLine(product_id=2, quantity=1, unit_price_cents=2500),
        ]

    def test_discount_then_tax_rounded_once(self):
        result = compute_pricing(self.lines, tax_rate_percent="11", discount_rules=[percent_rule(10)])

        self.assertEqual(result.subtotal_cents, 22500)
        self.assertEqual(result.discount_cents, 2250)
        self.assertEqual(result.taxable_cents, 20250)
        self.assertEqual(result.tax_cents, 2228)
        self.assertEqual(result.grand_total_cents, 22478)
        self.assertEqual(result.pricing_mode, "AUTO")
        self.assertEqual(result.applied_rules, [{"id": 1, "name": "10% off", "kind": "PERCENT", "amount_cents": 2250}])

    def test_line_attribution_sums_to_header(self):
        result = compute_pricing(self.lines, tax_rate_percent="11", discount_rules=[percent_rule(10)])

        self.assertEqual(result.line_discounts, [2000, 250])
        self.assertEqual(result.line_totals, [18000, 2250])
        self.assertEqual(result.line_dues, [19980, 2498])
        self.assertEqual(sum(result.line_dues), result.grand_total_cents)

    def test_rule_below_minimum_does_not_apply(self):
        result = compute_pricing(self.lines, discount_rules=[percent_rule(10, min_subtotal_cents=50000)])
        self.assertEqual(result.discount_cents, 0)
        self.assertEqual(result.applied_rules, [])
        self.assertEqual(result.grand_total_cents, 22500)

    def test_cashier_discount_stacks_with_rules_and_is_recorded(self):
        result = compute_pricing(self.lines, discount_rules=[percent_rule(10)], manual_discount_cents=250)
        self.assertEqual(result.discount_cents, 2500)
        self.assertEqual(result.grand_total_cents, 20000)
        self.assertEqual(result.pricing_mode, "MANUAL")
        self.assertEqual(result.manual_discount_cents, 250)
        self.assertEqual(
            [(rule["kind"], rule["amount_cents"]) for rule in result.applied_rules],
            [("CASHIER", 250), ("PERCENT", 2250)],
        )

    def test_only_the_best_rule_applies(self):
        result = compute_pricing(
            self.lines,
            discount_rules=[percent_rule(60, rule_id=1), percent_rule(50, rule_id=2), flat_rule(5000, rule_id=3)],
        )
        self.assertEqual(result.discount_cents, 13500)
        self.assertEqual([rule["id"] for rule in result.applied_rules], [1])

    def test_equal_rules_keep_the_earliest(self):
        result = compute_pricing(self.lines, discount_rules=[flat_rule(2250, rule_id=4), percent_rule(10, rule_id=5)])
        self.assertEqual([rule["id"] for rule in result.applied_rules], [4])

    def test_flat_rule_larger_than_cart_is_capped(self):
        lines = [PricedLine(product_id=1, quantity=1, unit_price_cents=300)]
        result = compute_pricing(lines, tax_rate_percent="11", discount_rules=[flat_rule(5000)])
        self.assertEqual(result.discount_cents, 300)
        self.assertEqual(result.tax_cents, 0)
        self.assertEqual(result.grand_total_cents, 0)
        self.assertEqual(result.applied_rules[0]["amount_cents"], 300)

    def test_rule_is_capped_after_cashier_discount(self):
        result = compute_pricing(self.lines, discount_rules=[percent_rule(95)], manual_discount_cents=20000)
        self.assertEqual(result.discount_cents, 22500)
        self.assertEqual(result.applied_rules[1]["amount_cents"], 2500)

    def test_cashier_discount_cannot_combine_with_override(self):
        with self.assertRaises(InvalidPricing):
            compute_pricing(
                self.lines,
                manual_discount_cents=100,
                override=ManualOverride(discount_cents=0, tax_cents=0, reason="x"),
            )

    def test_override_replaces_discount_and_tax(self):
        result = compute_pricing(
            self.lines,
            tax_rate_percent="11",
            discount_rules=[percent_rule(10)],
            override=ManualOverride(discount_cents=500, tax_cents=0, reason="Damaged packaging"),
        )
        self.assertEqual(result.discount_cents, 500)
        self.assertEqual(result.tax_cents, 0)
        self.assertEqual(result.grand_total_cents, 22000)
        self.assertEqual(result.pricing_mode, "MANUAL")
        self.assertEqual(result.pricing_note, "Damaged packaging")
        self.assertEqual(result.applied_rules, [])

    def test_override_requires_reason(self):
        with self.assertRaises(InvalidPricing):
            compute_pricing(self.lines, override=ManualOverride(discount_cents=0, tax_cents=0, reason="  "))

    def test_override_tax_cannot_be_negative(self):
        with self.assertRaises(InvalidPricing):
            compute_pricing(self.lines, override=ManualOverride(discount_cents=0, tax_cents=-1, reason="x"))

    def test_discount_larger_than_subtotal_rejected(self):
        with self.assertRaises(InvalidPricing):
            compute_pricing(self.lines, manual_discount_cents=22501)
        with self.assertRaises(InvalidPricing):
            compute_pricing(self.lines, override=ManualOverride(discount_cents=22501, tax_cents=0, reason="x"))

    def test_tax_rate_out_of_range_rejected(self):
        for rate in ("-1", "100.01", "abc", True):
            with self.subTest(rate=rate):
                with self.assertRaises(InvalidPricing):
                    compute_pricing(self.lines, tax_rate_percent=rate)

    def test_zero_priced_cart(self):
        result = compute_pricing([PricedLine(product_id=9, quantity=3, unit_price_cents=0)], tax_rate_percent="11")
        self.assertEqual(result.grand_total_cents, 0)
        self.assertEqual(result.line_dues, [0])

    def test_tax_rate_is_kept_as_decimal(self):
        result = compute_pricing(self.lines, tax_rate_percent=7.5)
        self.assertEqual(result.tax_rate_percent, Decimal("7.5"))
        self.assertEqual(result.tax_cents, 1688)  # 22500 * 7.5% = 1687.5 -> 1688


class AllocationTests(unittest.TestCase):
    def test_round_half_up(self):
        self.assertEqual(round_half_up(Decimal("2.5")), 3)
        self.assertEqual(round_half_up(Decimal("2.49")), 2)

    def test_largest_remainder_ties_go_to_earliest(self):
        self.assertEqual(allocate_proportionally(100, [1, 1, 1]), [34, 33, 33])

    def test_all_zero_weights_split_evenly(self):
        self.assertEqual(allocate_proportionally(5, [0, 0]), [3, 2])

    def test_empty_weights(self):
        self.assertEqual(allocate_proportionally(5, []), [])

    def test_flat_rule(self):
        rule = SimpleNamespace(kind="FLAT", flat_cents=700, percent=None, min_subtotal_cents=1000)
        self.assertEqual(rule_discount_cents(rule, 999), 0)
        self.assertEqual(rule_discount_cents(rule, 1000), 700)

    def test_unknown_rule_kind(self):
        with self.assertRaises(InvalidPricing):
            rule_discount_cents(SimpleNamespace(kind="BOGO", min_subtotal_cents=0), 100)


if __name__ == "__main__":
    unittest.main()
