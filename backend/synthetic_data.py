"""
Module: synthetic_data.py
Description: Synthetic labelled transaction generator for classifier training and demos.

Generates realistic UPI / card / net-banking payments with:
    - Payee names and handles typical of Indian merchants, per category
    - Habit merchants (many small visits) vs. occasional large payments
    - Monthly fixed payments (rent, salary, SIPs, bills)
    - Free-text notes the way users type them ("dinner w/ team", "jan rent")

Every record carries its true category, so the output doubles as the
training set for the local category model (see train_models.py).

Author: Spending Tracker Team

Usage:
    from synthetic_data import SyntheticDataGenerator
    transactions = SyntheticDataGenerator(seed=7).generate(months=6)
    texts, labels = SyntheticDataGenerator().labelled_examples()
"""

import random
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, List, Tuple


# category -> (payees, upi handle suffixes or bank names, notes, amount range)
MERCHANTS: Dict[str, Dict] = {
    "Food & Dining": {
        "payees": ["Swiggy", "Zomato", "Haldiram's", "Barbeque Nation", "Chaayos", "Third Wave Coffee",
                   "Paradise Biryani", "Saravana Bhavan", "Domino's Pizza", "Behrouz Biryani", "Wow Momo"],
        "notes": ["dinner", "lunch with team", "snacks", "weekend brunch", "office chai", ""],
        "amount_range": (80, 1800),
    },
    "Groceries": {
        "payees": ["BigBasket", "Blinkit", "Zepto", "DMart", "More Retail", "Spencer's", "Reliance Fresh",
                   "Ratnadeep Supermarket", "Star Bazaar", "Sharma Kirana Store"],
        "notes": ["weekly groceries", "vegetables", "milk and eggs", "monthly ration", ""],
        "amount_range": (120, 4500),
    },
    "Transportation": {
        "payees": ["Uber India", "Ola Cabs", "Rapido", "Namma Yatri", "BluSmart", "Delhi Metro Rail",
                   "Indian Oil Petrol Pump", "HP Petrol Pump", "FASTag Recharge", "Mumbai Local Pass"],
        "notes": ["cab to office", "auto ride", "fuel", "toll", "metro card recharge", ""],
        "amount_range": (40, 3000),
    },
    "Shopping": {
        "payees": ["Amazon", "Flipkart", "Myntra", "Ajio", "Meesho", "Lenskart", "FirstCry", "Croma",
                   "Decathlon", "Westside", "Lifestyle Stores"],
        "notes": ["new shoes", "birthday gift", "kurta", "headphones", "home decor", ""],
        "amount_range": (300, 12000),
    },
    "Bills & Utilities": {
        "payees": ["BESCOM Electricity", "Adani Electricity", "Tata Power", "Airtel Postpaid", "Jio Recharge",
                   "BSNL Broadband", "ACT Fibernet", "Mahanagar Gas", "Tata Play DTH"],
        "notes": ["electricity bill", "mobile bill", "wifi", "gas bill", "dth recharge", ""],
        "amount_range": (199, 4500),
    },
    "Rent & Housing": {
        "payees": ["Landlord Ramesh Kumar", "NoBroker Rent", "Prestige Society Maintenance", "Housing.com Rent",
                   "Apartment Association"],
        "notes": ["monthly rent", "maintenance charges", "jan rent", "society dues", ""],
        "amount_range": (2500, 45000),
    },
    "Entertainment": {
        "payees": ["Netflix", "Disney+ Hotstar", "Spotify", "Prime Video", "BookMyShow", "PVR Cinemas",
                   "INOX Movies", "Steam Games", "JioCinema"],
        "notes": ["movie night", "subscription", "concert tickets", "ipl tickets", ""],
        "amount_range": (99, 3500),
    },
    "Health & Fitness": {
        "payees": ["Apollo Pharmacy", "MedPlus", "Tata 1mg", "PharmEasy", "Practo Consult", "Cult.fit",
                   "Manipal Hospital", "Thyrocare Diagnostics", "Gold's Gym"],
        "notes": ["medicines", "doctor consultation", "gym membership", "blood test", ""],
        "amount_range": (150, 9000),
    },
    "Travel": {
        "payees": ["MakeMyTrip", "Goibibo", "Cleartrip", "IndiGo Airlines", "Air India", "IRCTC Ticket",
                   "OYO Rooms", "redBus", "Taj Hotels", "Yatra Online"],
        "notes": ["flight to goa", "train tickets", "hotel booking", "bus to pune", "vacation", ""],
        "amount_range": (600, 30000),
    },
    "Education": {
        "payees": ["BYJU'S", "Unacademy", "Coursera", "Udemy", "Physics Wallah", "Delhi Public School",
                   "Christ University Fees", "Allen Career Institute"],
        "notes": ["course fee", "school fees", "tuition", "exam fee", "books", ""],
        "amount_range": (400, 60000),
    },
    "Personal Care": {
        "payees": ["Urban Company", "Lakme Salon", "Naturals Salon", "Jawed Habib", "Enrich Salon",
                   "VLCC", "Looks Salon"],
        "notes": ["haircut", "spa", "facial", "grooming", ""],
        "amount_range": (150, 4000),
    },
    "Investments": {
        "payees": ["Zerodha", "Groww", "Upstox", "ICICI Prudential MF", "HDFC Mutual Fund SIP",
                   "NPS Contribution", "PPF Deposit", "Kuvera"],
        "notes": ["monthly sip", "stocks", "mutual fund", "ppf", "nps", ""],
        "amount_range": (500, 25000),
    },
    "Transfers": {
        "payees": ["Self Transfer", "Rahul Sharma", "Priya Verma", "Mom", "Amit Patel", "Sneha Iyer"],
        "notes": ["self transfer", "split bill", "returning money", "neft transfer", "imps", ""],
        "amount_range": (100, 20000),
    },
    "Salary & Income": {
        "payees": ["Infosys Ltd Payroll", "TCS Salary", "Acme Technologies Pvt Ltd", "Freelance Client",
                   "HDFC Bank Interest", "Dividend Credit"],
        "notes": ["salary", "monthly salary", "interest", "dividend", "freelance payment", "bonus"],
        "amount_range": (1000, 150000),
    },
    "Other": {
        "payees": ["Local Vendor", "Misc Payment", "Street Shop", "Temple Donation", "Courier Charges",
                   "Laundry Service"],
        "notes": ["misc", "donation", "courier", "laundry", ""],
        "amount_range": (20, 2500),
    },
}

BANKS = ["HDFC Bank", "ICICI Bank", "State Bank of India", "Axis Bank", "Kotak Mahindra Bank"]
UPI_SUFFIXES = ["@okhdfcbank", "@okicici", "@ybl", "@paytm", "@axl", "@ibl"]

# Categories that come in as money received
CREDIT_CATEGORIES = {"Salary & Income"}


class SyntheticDataGenerator:
    """
    Labelled synthetic transactions.

    Output records are plain dicts with: timestamp, amount, flow,
    transaction_type, payee, payee_handle, notes, category.
    """

    def __init__(self, seed: int = 42):
        """
        Args:
            seed: Random seed for reproducibility.
        """
        self.random = random.Random(seed)
        self.end_date = datetime.utcnow().replace(microsecond=0) - timedelta(days=1)

    def generate(self, months: int = 6, txns_per_month: int = 80) -> List[Dict]:
        """
        Generate transactions for the last `months` months, oldest first.

        Fixed payments (salary, rent, SIP, one bill) occur once a month; the
        remainder is spread across categories, weighted toward everyday spend.
        """
        start_date = self.end_date - timedelta(days=30 * months)
        transactions = []

        for month in range(months):
            month_start = start_date + timedelta(days=30 * month)

            for category, day in (("Salary & Income", 1), ("Rent & Housing", 3),
                                  ("Investments", 5), ("Bills & Utilities", 15)):
                transactions.append(self._make(category, month_start + timedelta(days=day - 1)))

            weights = self._category_weights()
            everyday = [c for c in MERCHANTS if c not in CREDIT_CATEGORIES]
            for _ in range(max(txns_per_month - 4, 0)):
                category = self.random.choices(everyday, weights=[weights[c] for c in everyday])[0]
                when = month_start + timedelta(
                    days=self.random.randint(0, 29),
                    hours=self.random.randint(7, 22),
                    minutes=self.random.randint(0, 59),
                )
                transactions.append(self._make(category, when))

        transactions.sort(key=lambda t: t["timestamp"])
        return transactions

    def labelled_examples(self, per_category: int = 60) -> Tuple[List[str], List[str]]:
        """
        Balanced (text, category) pairs for training the category model.

        Text is built the same way the classifier builds its input:
        payee, payee handle and notes joined by spaces, lowercased.
        """
        texts, labels = [], []
        for category in MERCHANTS:
            for _ in range(per_category):
                record = self._make(category, self.end_date)
                texts.append(classifier_text(record))
                labels.append(category)
        return texts, labels

    def _category_weights(self) -> Dict[str, float]:
        weights = {c: 1.0 for c in MERCHANTS}
        # Everyday spend dominates
        weights.update({"Food & Dining": 6.0, "Groceries": 4.0, "Transportation": 4.0, "Shopping": 2.5,
                        "Entertainment": 1.5, "Rent & Housing": 0.1, "Education": 0.3})
        return weights

    def _make(self, category: str, when: datetime) -> Dict:
        profile = MERCHANTS[category]
        payee = self.random.choice(profile["payees"])
        low, high = profile["amount_range"]
        transaction_type = self.random.choice(["UPI", "UPI", "CARD", "NET_BANKING"])

        if category in CREDIT_CATEGORIES:
            transaction_type = "NET_BANKING"
        if transaction_type == "UPI":
            handle = payee.lower().replace(" ", "").replace("'", "")[:16] + self.random.choice(UPI_SUFFIXES)
        elif transaction_type == "NET_BANKING":
            handle = self.random.choice(BANKS)
        else:
            handle = ""

        return {
            "timestamp": when,
            "amount": round(self.random.uniform(low, high), 2),
            "flow": "CREDIT" if category in CREDIT_CATEGORIES else "DEBIT",
            "transaction_type": transaction_type,
            "payee": payee,
            "payee_handle": handle,
            "notes": self.random.choice(profile["notes"]),
            "category": category,
        }

    @staticmethod
    def get_statistics(transactions: List[Dict]) -> Dict:
        """Counts and totals per category, for eyeballing a generated set."""
        counts = Counter(t["category"] for t in transactions)
        totals = Counter()
        for t in transactions:
            totals[t["category"]] += t["amount"]
        return {
            "total_transactions": len(transactions),
            "by_category": {
                c: {"count": counts[c], "total": round(totals[c], 2)}
                for c in sorted(counts)
            },
        }


def classifier_text(record: Dict) -> str:
    parts = [record.get("payee", ""), record.get("payee_handle", ""), record.get("notes", "")]
    return " ".join(p for p in parts if p).strip().lower()


if __name__ == "__main__":
    generator = SyntheticDataGenerator()
    data = generator.generate()
    stats = generator.get_statistics(data)
    print(f"Generated {stats['total_transactions']} transactions")
    for category, row in stats["by_category"].items():
        print(f"  {category:<20} {row['count']:>4}  ₹{row['total']:>12,.2f}")
