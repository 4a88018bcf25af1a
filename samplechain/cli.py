import click
from flask.cli import with_appcontext
from sqlalchemy.exc import SQLAlchemyError
from samplechain.extensions import db
from samplechain.errors import SampleChainError
from samplechain.models import User, Shipment, ShippingSupply
from samplechain.notifications import notify_stock_alert


DEFAULT_SUPPLIES = (
    # name, type, unit, starting count, low stock threshold
    ('Insulated shipper, small', 'box', 'each', 20, 5),
    ('Insulated shipper, large', 'box', 'each', 10, 3),
    ('Dry ice pack', 'coolant', 'each', 40, 10),
    ('Absorbent pad', 'absorbent', 'each', 100, 20),
    ('Secondary containment bag', 'bag', 'each', 100, 20),
    ('UN3373 label', 'label', 'each', 200, 50),
    ('Class 3 flammable label', 'label', 'each', 200, 50),
)


def init_cli(app):
    app.cli.add_command(init_db_command)
    app.cli.add_command(create_admin_command)
    app.cli.add_command(seed_supplies_command)
    app.cli.add_command(check_low_supplies_command)
    app.cli.add_command(poll_tracking_command)


@click.command("init-db")
@click.option('--drop', is_flag=True, help='Drop existing tables first')
@with_appcontext
def init_db_command(drop):
    """Initialize database tables"""
    if drop:
        db.drop_all()
    db.create_all()
    click.echo("Database tables created.")


@click.command("create-admin")
@click.option('--username', default='admin', help='Admin username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Admin password')
@click.option('--email', default='admin@example.com', help='Admin email')
@with_appcontext
def create_admin_command(username, password, email):
    """Create an admin user"""
    existing_user = User.query.filter_by(username=username).first()
    if existing_user:
        click.echo(f"Admin '{username}' already exists")
        return

    admin = User(
        username=username,
        email=email,
        role='admin'
    )
    admin.set_password(password)

    db.session.add(admin)
    try:
        db.session.commit()
        click.echo(f"Admin '{username}' has been created")
    except SQLAlchemyError as e:
        db.session.rollback()
        click.echo(f"Error creating admin: {str(e)}", err=True)


@click.command("seed-supplies")
@with_appcontext
def seed_supplies_command():
    """Add the standard shipping supplies that are missing"""
    added = 0
    for name, supply_type, unit, count, threshold in DEFAULT_SUPPLIES:
        if ShippingSupply.query.filter_by(name=name).first():
            continue
        db.session.add(ShippingSupply(
            name=name,
            supply_type=supply_type,
            unit=unit,
            current_quantity=count,
            low_stock_threshold=threshold
        ))
        click.echo(f"Added supply: {name}")
        added += 1

    try:
        db.session.commit()
        click.echo(f"{added} supplies seeded.")
    except SQLAlchemyError as e:
        db.session.rollback()
        click.echo(f"Error seeding supplies: {str(e)}", err=True)


@click.command("check-low-supplies")
@click.option('--alert', is_flag=True, help='Broadcast a stock alert for each low supply')
@with_appcontext
def check_low_supplies_command(alert):
    """List supplies at or below their low stock threshold"""
    from samplechain.services import supplies

    low = supplies.low_stock()
    if not low:
        click.echo("All supplies are above their thresholds.")
        return
    for supply in low:
        click.echo(f"{supply.name}: {supply.current_quantity} {supply.unit} "
                   f"(threshold {supply.low_stock_threshold}, {supply.check_stock_level()})")
        if alert:
            notify_stock_alert(supply)


@click.command("poll-tracking")
@click.option('--actor', 'actor_username', default='admin', help='User recorded on delivery events')
@with_appcontext
def poll_tracking_command(actor_username):
    """Poll the carrier for every shipped shipment"""
    from samplechain.services import fulfillment

    actor = User.query.filter_by(username=actor_username).first()
    if actor is None:
        click.echo(f"User '{actor_username}' not found", err=True)
        raise SystemExit(1)

    shipment_ids = [s.id for s in Shipment.query.filter_by(status='shipped').order_by(Shipment.id)]
    delivered = 0
    for shipment_id in shipment_ids:
        try:
            shipment, info = fulfillment.poll_tracking(shipment_id, actor)
        except SampleChainError as e:
            click.echo(f"Shipment {shipment_id}: {e.message}", err=True)
            continue
        status = info.status if info else shipment.status
        click.echo(f"{shipment.shipment_number}: {status}")
        if shipment.status == 'delivered':
            delivered += 1
    click.echo(f"{len(shipment_ids)} polled, {delivered} delivered.")
