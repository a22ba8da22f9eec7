"""
Module: train_models.py
Description: Train the local transaction category model.

Keyword rules in services/classifier.py handle well-known merchants; this
model covers everything else. It is a TF-IDF (character n-grams) plus
logistic regression pipeline over the payee / handle / notes text.

Why character n-grams:
    - Payee strings are short, misspelled and full of brand names
    - UPI handles ("swiggy@ybl") carry signal inside single tokens

Run ONCE during setup, then the model is loaded for inference.

Usage:
    python backend/train_models.py

Output:
    - models/category_model.joblib

Author: Spending Tracker Team
"""

import sys
from pathlib import Path
from typing import Dict, List

from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import accuracy_score, f1_score
from sklearn.model_selection import train_test_split
from sklearn.pipeline import Pipeline
import joblib

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent))

import config
from services.classifier import MODEL_FILENAME
from synthetic_data import SyntheticDataGenerator


# =============================================================================
# Configuration
# =============================================================================

RANDOM_STATE = 42
TEST_SIZE = 0.2


# =============================================================================
# Model Training
# =============================================================================

def build_pipeline() -> Pipeline:
    return Pipeline([
        ("tfidf", TfidfVectorizer(analyzer="char_wb", ngram_range=(2, 4), sublinear_tf=True)),
        ("clf", LogisticRegression(max_iter=2000, C=5.0, random_state=RANDOM_STATE)),
    ])


def train_category_model(texts: List[str], labels: List[str], evaluate: bool = True) -> Dict:
    """
    Fit the category pipeline.

    Args:
        texts: Lowercased classifier input text.
        labels: Category for each text.
        evaluate: Hold out TEST_SIZE of the data to report accuracy before
            refitting on everything.

    Returns:
        Dict with the fitted pipeline and hold-out metrics (None if skipped).
    """
    accuracy = macro_f1 = None

    if evaluate:
        X_train, X_test, y_train, y_test = train_test_split(
            texts, labels, test_size=TEST_SIZE, random_state=RANDOM_STATE, stratify=labels,
        )
        holdout = build_pipeline().fit(X_train, y_train)
        predictions = holdout.predict(X_test)
        accuracy = accuracy_score(y_test, predictions)
        macro_f1 = f1_score(y_test, predictions, average="macro")

    pipeline = build_pipeline().fit(texts, labels)
    return {
        "pipeline": pipeline,
        "accuracy": accuracy,
        "macro_f1": macro_f1,
        "classes": list(pipeline.classes_),
    }


# =============================================================================
# Main
# =============================================================================

def main():
    """Train and save the category model."""
    print("\n" + "=" * 60)
    print("SPENDING TRACKER - CATEGORY MODEL TRAINING")
    print("=" * 60)

    model_dir = Path(config.MODEL_DIR)
    model_dir.mkdir(parents=True, exist_ok=True)
    print(f"\nModel directory: {model_dir}")

    texts, labels = SyntheticDataGenerator().labelled_examples(per_category=80)
    print(f"Training examples: {len(texts)} across {len(set(labels))} categories")

    results = train_category_model(texts, labels)
    print(f"\nHold-out accuracy: {results['accuracy']:.2%}")
    print(f"Hold-out macro F1: {results['macro_f1']:.2%}")

    model_path = model_dir / MODEL_FILENAME
    joblib.dump(results["pipeline"], model_path)
    print(f"\nModel saved to: {model_path}")


if __name__ == "__main__":
    main()
