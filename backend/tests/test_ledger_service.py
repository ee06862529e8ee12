import unittest

from grocerymart import create_app
from grocerymart.extensions import db
from grocerymart.errors import ValidationError, InsufficientCreditsError, NotFoundError
from grocerymart.models import Account, CreditTransaction
from grocerymart.services import ledger_service


class LedgerServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app({
            "SECRET_KEY": "test",
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,
            "TESTING": True,
        })
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        db.session.query(CreditTransaction).delete()
        db.session.query(Account).delete()
        db.session.commit()

        self.account = Account(
            name="Ledger Tester",
            email="ledger@example.com",
            password_hash="not-a-real-hash",
            referral_code="LEDGER01",
        )
        db.session.add(self.account)
        db.session.commit()

    def _balance(self) -> int:
        return ledger_service.get_balance(self.account.id)

    def test_add_credits_returns_new_balance_and_journals(self):
        balance = ledger_service.add_credits(self.account.id, 5000, "Welcome bonus")
        self.assertEqual(balance, 5000)
        self.assertEqual(self._balance(), 5000)

        rows, total = ledger_service.get_credit_history(self.account.id)
        self.assertEqual(total, 1)
        self.assertEqual(rows[0].amount_cents, 5000)
        self.assertEqual(rows[0].balance_after_cents, 5000)
        self.assertEqual(rows[0].reason, "Welcome bonus")
        self.assertEqual(rows[0].transaction_type, ledger_service.TXN_ADJUSTMENT)

    def test_add_credits_rejects_non_positive_amounts(self):
        for amount in (0, -100, 10.5, True, "100"):
            with self.assertRaises(ValidationError):
                ledger_service.add_credits(self.account.id, amount, "Bad amount")
        self.assertEqual(self._balance(), 0)
        self.assertEqual(db.session.query(CreditTransaction).count(), 0)

    def test_reason_is_required(self):
        with self.assertRaises(ValidationError):
            ledger_service.add_credits(self.account.id, 100, "   ")

    def test_deduct_credits_reduces_balance(self):
        ledger_service.add_credits(self.account.id, 5000, "Seed")
        balance = ledger_service.deduct_credits(self.account.id, 1500, "Spend")
        self.assertEqual(balance, 3500)

        rows, _total = ledger_service.get_credit_history(self.account.id)
        amounts = sorted(row.amount_cents for row in rows)
        self.assertEqual(amounts, [-1500, 5000])

    def test_deduct_beyond_balance_fails_and_leaves_balance_untouched(self):
        ledger_service.add_credits(self.account.id, 1000, "Seed")

        with self.assertRaises(InsufficientCreditsError) as ctx:
            ledger_service.deduct_credits(self.account.id, 1001, "Too much")

        self.assertEqual(ctx.exception.details["balance_cents"], 1000)
        self.assertEqual(ctx.exception.details["requested_cents"], 1001)
        self.assertEqual(self._balance(), 1000)
        self.assertEqual(db.session.query(CreditTransaction).count(), 1)

    def test_deduct_entire_balance_reaches_zero(self):
        ledger_service.add_credits(self.account.id, 700, "Seed")
        self.assertEqual(ledger_service.deduct_credits(self.account.id, 700, "All of it"), 0)

    def test_unknown_account(self):
        with self.assertRaises(NotFoundError):
            ledger_service.add_credits(999999, 100, "Ghost")
        with self.assertRaises(NotFoundError):
            ledger_service.deduct_credits(999999, 100, "Ghost")

    def test_adjust_credits_both_directions(self):
        self.assertEqual(ledger_service.adjust_credits(self.account.id, 2500, "Goodwill", actor_id=1), 2500)
        self.assertEqual(ledger_service.adjust_credits(self.account.id, -500, "Correction", actor_id=1), 2000)

        with self.assertRaises(InsufficientCreditsError):
            ledger_service.adjust_credits(self.account.id, -5000, "Overdraw", actor_id=1)
        with self.assertRaises(ValidationError):
            ledger_service.adjust_credits(self.account.id, 0, "Nothing")

        rows, _total = ledger_service.get_credit_history(self.account.id)
        self.assertTrue(all("(by admin 1)" in row.reason for row in rows))
        self.assertEqual(self._balance(), 2000)


if __name__ == "__main__":
    unittest.main()
