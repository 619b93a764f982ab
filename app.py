"""Car rental booking and reporting service.

To run the app locally:

    # Install the package and its dependencies
    pip install -e .

    # Initialise the database
    python app.py --init-db

    # Start the development server
    python app.py

The API is served at http://localhost:5000/.  Set DATABASE_URL to point it
at a database other than the local SQLite file.
"""

import argparse

from car_rental import create_app
from car_rental.models import db


def init_db():
    """Initialise the database tables."""
    db.create_all()
    print("Database initialised.")


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description="Car rental booking service")
    parser.add_argument('--init-db', action='store_true', help='Initialise the database')
    args = parser.parse_args()
    app = create_app()
    if args.init_db:
        with app.app_context():
            init_db()
    else:
        app.run(debug=True)
