"""
Create the tables and load demo data.

    koihire-seed            # create tables, insert demo rows if the db is empty
    koihire-seed --reset    # drop everything first
"""

import logging
from datetime import datetime, timedelta

import click

from . import models
from .auth import hash_password
from .database import Base, SessionLocal, engine
from .models import FeaturedLevel, PackageTier, PayoutMethod, PortfolioCategory, Role

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "koihire123"

CATEGORIES = [
    ("Web Development", "web-development", "Websites, web apps and APIs"),
    ("Mobile Apps", "mobile-apps", "iOS, Android and cross-platform apps"),
    ("Design & Creative", "design-creative", "Logos, branding, UI and illustration"),
    ("Writing & Translation", "writing-translation", "Copywriting, articles and translation"),
    ("Marketing", "marketing", "SEO, social media and advertising"),
    ("Data & Analytics", "data-analytics", "Dashboards, data pipelines and analysis"),
]

USERS = [
    ("admin", "admin@koihire.com", Role.ADMIN, "Platform", "Admin"),
    ("alice", "alice@example.com", Role.CLIENT, "Alice", "Chen"),
    ("bob", "bob@example.com", Role.CLIENT, "Bob", "Lin"),
    ("carol", "carol@example.com", Role.FREELANCER, "Carol", "Wu"),
    ("dave", "dave@example.com", Role.FREELANCER, "Dave", "Huang"),
]

PROJECTS = [
    ("alice", "web-development", "Company website redesign",
     "Rebuild our marketing site with a modern responsive layout and a simple CMS.", 800, 1500, "4 weeks",
     FeaturedLevel.PREMIUM),
    ("alice", "design-creative", "Logo and brand guide",
     "We need a new logo, a colour palette and a short brand guide for a tea shop.", 200, 500, "2 weeks",
     FeaturedLevel.NONE),
    ("bob", "data-analytics", "Sales dashboard",
     "Build a dashboard on top of our PostgreSQL sales data with weekly reports.", 1000, 2500, "1 month",
     FeaturedLevel.FEATURED),
]

SERVICES = [
    ("carol", "web-development", "I will build a fast landing page",
     "Responsive landing page built with modern tooling, deployed and tested on all major browsers.",
     [(PackageTier.BASIC, "One section", 50, 3, 1), (PackageTier.STANDARD, "Full page", 150, 5, 2),
      (PackageTier.PREMIUM, "Page + CMS", 350, 10, 5)],
     FeaturedLevel.SPOTLIGHT),
    ("dave", "design-creative", "I will design a minimalist logo",
     "Clean, minimalist logo concepts with source files and unlimited colour variants.",
     [(PackageTier.BASIC, "One concept", 30, 2, 1), (PackageTier.STANDARD, "Three concepts", 80, 4, 3)],
     FeaturedLevel.NONE),
]

PORTFOLIOS = [
    ("carol", "Clinic booking platform", "Online appointment booking with SMS reminders for a dental clinic.",
     PortfolioCategory.WEB_DEVELOPMENT, ["FastAPI", "PostgreSQL", "Vue"], 120),
    ("dave", "Tea shop identity", "Logo, packaging labels and a one-page brand guide for a tea shop.",
     PortfolioCategory.DESIGN, ["Illustrator", "Figma"], 45),
]


def seed(db):
    categories = {}
    for name, slug, description in CATEGORIES:
        category = models.Category(name=name, slug=slug, description=description)
        db.add(category)
        categories[slug] = category

    users = {}
    for username, email, role, first_name, last_name in USERS:
        user = models.User(
            username=username, email=email, role=role, first_name=first_name, last_name=last_name,
            hashed_password=hash_password(DEMO_PASSWORD),
        )
        if role == Role.FREELANCER:
            user.payout_method = PayoutMethod.PAYPAL
            user.payout_email = email
            user.skills = ["python", "design"] if username == "carol" else ["branding", "illustration"]
        db.add(user)
        users[username] = user
    db.flush()

    now = datetime.now()
    for owner, slug, title, description, low, high, timeline, level in PROJECTS:
        db.add(models.Project(
            client_id=users[owner].id, category_id=categories[slug].id, title=title, description=description,
            min_budget=low, max_budget=high, timeline=timeline, featured_level=level,
            featured_until=now + timedelta(days=30) if level != FeaturedLevel.NONE else None,
        ))

    for owner, slug, title, description, packages, level in SERVICES:
        service = models.Service(
            freelancer_id=users[owner].id, category_id=categories[slug].id, title=title, description=description,
            short_description=description[:120], featured_level=level,
            featured_until=now + timedelta(days=90) if level != FeaturedLevel.NONE else None,
        )
        service.packages = [
            models.ServicePackage(
                tier=tier, title=name, description=f"{name} package", price=price,
                delivery_days=days, revisions=revisions, features=[name],
            )
            for tier, name, price, days, revisions in packages
        ]
        db.add(service)

    for owner, title, description, category, technologies, days_ago in PORTFOLIOS:
        db.add(models.Portfolio(
            user_id=users[owner].id, title=title, description=description, category=category,
            technologies=technologies, completed_at=now - timedelta(days=days_ago),
        ))
    db.commit()


@click.command()
@click.option("--reset", is_flag=True, help="Drop all tables before seeding.")
@click.option("--yes", is_flag=True, help="Do not ask before dropping tables.")
def main(reset, yes):
    """Create tables and insert demo data."""
    logging.basicConfig(level=logging.INFO)
    if reset:
        if not yes:
            click.confirm("Drop every table and all data?", abort=True)
        Base.metadata.drop_all(bind=engine)
        logger.info("dropped all tables")
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        if db.query(models.User).first():
            click.echo("Database already has data, skipping seed (use --reset to start over).")
            return
        seed(db)
        click.echo(f"Seeded {len(CATEGORIES)} categories, {len(USERS)} users, "
                   f"{len(PROJECTS)} projects, {len(SERVICES)} services and {len(PORTFOLIOS)} portfolio items.")
        click.echo(f"Demo password for every account: {DEMO_PASSWORD}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
